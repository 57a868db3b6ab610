import asyncio
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis, RedisError

from user_index.core.config import Settings
from user_index.core.errors import SyncLockUnavailableError, SyncQueueUnavailableError
from user_index.jobs.queue import SyncJob
from user_index.models import UserRecord

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    async def add(self, job: SyncJob) -> str: ...


class UserSyncScheduler:
    """
    Decides when a full rebuild of the email index gets queued.

    Two guards keep concurrent callers from stacking rebuilds:

    - a last-sync timestamp debounces calls inside ``min_interval_ms``;
    - a ``SET NX PX`` lock lets exactly one caller enqueue. The lock is never
      released, it simply expires, so a caller that dies between acquiring
      and enqueuing delays the next rebuild by one TTL at most.

    A busy lock is the normal case and returns quietly. An unreachable lock
    store raises SyncLockUnavailableError: skipping the rebuild silently
    would let the index drift without bound.
    """

    def __init__(
        self,
        redis: Redis,
        queue: JobQueue,
        *,
        lock_key: str = "user-sync:lock",
        last_sync_key: str = "user-sync:last-sync",
        lock_ttl_ms: int = 30_000,
        min_interval_ms: int = 300_000,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.queue = queue
        self.lock_key = lock_key
        self.last_sync_key = last_sync_key
        self.lock_ttl_ms = lock_ttl_ms
        self.min_interval_ms = min_interval_ms
        self._clock = clock

    @classmethod
    def from_settings(
        cls, redis: Redis, queue: JobQueue, settings: Settings
    ) -> "UserSyncScheduler":
        return cls(
            redis,
            queue,
            lock_key=settings.sync_lock_key,
            last_sync_key=settings.sync_last_key,
            lock_ttl_ms=settings.sync_lock_ttl_ms,
            min_interval_ms=settings.sync_min_interval_ms,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _parse_last_sync(self, raw: str | None) -> int | None:
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable last sync time {raw!r}")
            return None

    async def schedule_full_sync(self) -> bool:
        """Queue a full rebuild unless one ran recently or is being queued.

        Returns True when this call enqueued the job.
        """
        now = self._now_ms()
        try:
            last_sync = self._parse_last_sync(await self.redis.get(self.last_sync_key))
            if last_sync is not None and now - last_sync < self.min_interval_ms:
                logger.debug("Last user sync too recent, skipping")
                return False

            acquired = await self.redis.set(
                self.lock_key, "locked", nx=True, px=self.lock_ttl_ms
            )
        except RedisError as e:
            raise SyncLockUnavailableError(f"Sync lock store unavailable: {e}") from e

        if not acquired:
            logger.debug("User sync lock held elsewhere, skipping")
            return False

        await self.queue.add(SyncJob.full_rebuild())
        try:
            await self.redis.set(self.last_sync_key, str(now))
        except RedisError as e:
            raise SyncLockUnavailableError(
                f"Could not record last sync time: {e}"
            ) from e

        logger.info("Scheduled full user sync")
        return True

    async def schedule_user_sync(self, record: UserRecord) -> None:
        """
        Write-path hook: queue an upsert of one user.

        Returns once the job is queued. The index is updated later by the
        worker, so callers get no read-after-write guarantee.
        """
        await self.queue.add(SyncJob.upsert_one(record))

    async def run_periodic(self, interval_seconds: float) -> None:
        """Call schedule_full_sync every interval until cancelled."""
        while True:
            try:
                await self.schedule_full_sync()
            except (SyncLockUnavailableError, SyncQueueUnavailableError) as e:
                logger.error(f"Periodic user sync failed: {e}")
            except Exception:
                logger.exception("Unexpected error in periodic user sync")
            await asyncio.sleep(interval_seconds)
