import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from redis.asyncio import RedisError

from user_index.cache.client import close_redis, connect_redis
from user_index.cache.index_store import EmailIndexStore, IndexKeys
from user_index.cache.layer import CacheLayer
from user_index.core.config import get_settings
from user_index.core.logging import configure_logging
from user_index.database import create_engine_and_sessionmaker
from user_index.jobs.celery_app import celery_app
from user_index.jobs.queue import UserSyncQueue
from user_index.jobs.scheduler import UserSyncScheduler
from user_index.routers import users
from user_index.services.search import PrefixSearchReader

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)

    redis = await connect_redis(settings)
    engine, session_factory = create_engine_and_sessionmaker(settings.database_url)
    index_store = EmailIndexStore(redis, IndexKeys.from_settings(settings))
    scheduler = UserSyncScheduler.from_settings(
        redis, UserSyncQueue(celery_app), settings
    )

    app.state.redis = redis
    app.state.session_factory = session_factory
    app.state.index_store = index_store
    app.state.cache = CacheLayer.from_settings(redis, settings)
    app.state.search_reader = PrefixSearchReader(index_store)
    app.state.scheduler = scheduler

    sync_loop = None
    if settings.sync_tick_seconds > 0:
        sync_loop = asyncio.create_task(
            scheduler.run_periodic(settings.sync_tick_seconds)
        )
    logger.info(f"User index service started in {settings.env_mode} mode")

    yield

    if sync_loop is not None:
        sync_loop.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sync_loop
    await close_redis(redis)
    await engine.dispose()
    logger.info("User index service stopped")


app = FastAPI(
    title="User Index API",
    description="User directory with a Redis email index kept in sync through Celery",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(users.router)


@app.get("/")
async def root():
    return {
        "message": "Welcome to User Index API",
        "docs": "/docs",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check(request: Request):
    try:
        await request.app.state.redis.ping()
        redis_status = "up"
    except RedisError:
        redis_status = "down"
    return {
        "status": "healthy",
        "redis": redis_status,
        "indexed_users": await request.app.state.index_store.count(),
        "cache": request.app.state.cache.get_stats(),
    }
