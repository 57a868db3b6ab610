import asyncio

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from sqlmodel.sql.sqltypes import AutoString

from user_index.core.config import get_settings
from user_index.core.logging import configure_logging
from user_index.models import User  # noqa: F401  registers the users table

settings = get_settings()
configure_logging(settings)


def render_user_index_type(type_, obj, autogen_context):
    """Autogenerate plain ``sa.String`` columns instead of SQLModel's AutoString."""
    if type_ == "type" and isinstance(obj, AutoString):
        return f"sa.String(length={obj.length})" if obj.length else "sa.String()"
    return False


def migration_options() -> dict:
    return {
        "target_metadata": SQLModel.metadata,
        "render_item": render_user_index_type,
        "compare_type": True,
    }


def run_offline() -> None:
    """Emit the migration SQL for ``settings.database_url`` without connecting."""
    context.configure(
        url=settings.database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **migration_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def apply_migrations(connection: Connection) -> None:
    context.configure(connection=connection, **migration_options())
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    engine = create_async_engine(settings.database_url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(apply_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
