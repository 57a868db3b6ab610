import asyncio
import logging
from enum import Enum
from typing import Any

from celery import Celery
from kombu.exceptions import OperationalError
from pydantic import BaseModel, Field

from user_index.core.errors import SyncQueueUnavailableError
from user_index.models import UserRecord

logger = logging.getLogger(__name__)

PROCESS_TASK_NAME = "user_sync.process"
FULL_REBUILD_JOB_ID = "unique-user-sync"


class JobKind(str, Enum):
    FULL_REBUILD = "full-rebuild"
    UPSERT_ONE = "upsert-one"


class SyncJob(BaseModel):
    kind: JobKind
    job_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def full_rebuild(cls) -> "SyncJob":
        return cls(kind=JobKind.FULL_REBUILD, job_id=FULL_REBUILD_JOB_ID)

    @classmethod
    def upsert_one(cls, record: UserRecord) -> "SyncJob":
        return cls(
            kind=JobKind.UPSERT_ONE,
            job_id=f"sync-user:{record.id}",
            payload=record.model_dump(),
        )


class UserSyncQueue:
    """Producer side of the user-sync queue, backed by a Celery app."""

    def __init__(self, celery_app: Celery):
        self._celery = celery_app

    async def add(self, job: SyncJob) -> str:
        # send_task blocks on the broker connection
        try:
            await asyncio.to_thread(
                self._celery.send_task,
                PROCESS_TASK_NAME,
                args=[job.model_dump(mode="json")],
                task_id=job.job_id,
            )
        except OperationalError as e:
            raise SyncQueueUnavailableError(
                f"Could not enqueue {job.kind.value} job {job.job_id}: {e}"
            ) from e
        logger.debug(f"Enqueued {job.kind.value} job {job.job_id}")
        return job.job_id
