import logging
from enum import Enum
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from user_index.cache.index_store import EmailIndexStore
from user_index.core.errors import IndexWriteError, InvalidSyncJobError
from user_index.jobs.queue import JobKind, SyncJob
from user_index.models import User, UserRecord

logger = logging.getLogger(__name__)

UserLoader = Callable[[], Awaitable[list[UserRecord]]]


class JobState(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


async def load_user_records(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[UserRecord]:
    """Every (id, email, name) row of the users table."""
    async with session_factory() as session:
        result = await session.exec(select(User.id, User.email, User.name))
        return [
            UserRecord(id=str(user_id), email=email, name=name)
            for user_id, email, name in result.all()
        ]


class UserSyncWorker:
    """Applies sync jobs to the email index.

    Failed jobs are logged with their payload and reported as FAILED; nothing
    is re-raised and nothing is retried. A failed rebuild heals on the next
    scheduled one.
    """

    def __init__(self, store: EmailIndexStore, load_users: UserLoader):
        self.store = store
        self.load_users = load_users

    async def process(self, job: SyncJob) -> JobState:
        logger.debug(f"Job {job.job_id} ({job.kind.value}) received, processing")
        try:
            if job.kind is JobKind.FULL_REBUILD:
                await self.sync_all_users()
            elif job.kind is JobKind.UPSERT_ONE:
                await self.sync_user(job.payload)
            else:
                raise InvalidSyncJobError(f"Unknown job kind {job.kind!r}")
        except InvalidSyncJobError as e:
            logger.error(f"Job {job.job_id} rejected: {e} payload={job.payload}")
            return JobState.FAILED
        except Exception:
            logger.exception(f"Job {job.job_id} failed payload={job.payload}")
            return JobState.FAILED

        logger.info(f"Job {job.job_id} completed")
        return JobState.COMPLETED

    async def sync_all_users(self) -> None:
        logger.debug("Starting user sync for all users")
        users = await self.load_users()
        # An empty read here would leave stale entries behind
        indexed = await self.store.all_emails(strict=True)

        db_emails = {user.email for user in users}
        stale = [email for email in indexed if email not in db_emails]

        # Unconditional upsert also repairs drifted names and ids
        if not await self.store.reconcile(users, stale):
            raise IndexWriteError("Cache tier rejected the reconciliation batch")
        logger.info(
            f"User index synced: {len(users)} upserted, {len(stale)} removed"
        )

    async def sync_user(self, payload: dict) -> None:
        user_id = payload.get("id")
        email = payload.get("email")
        if not user_id or not email:
            raise InvalidSyncJobError("upsert-one job missing id or email")

        record = UserRecord(id=str(user_id), email=email, name=payload.get("name") or "")
        if not await self.store.upsert(record):
            raise IndexWriteError(f"Cache tier rejected upsert of {email}")
        logger.info(f"User {email} synced to index")
