"""Celery application consuming the user-sync queue.

Run a consumer with::

    celery -A user_index.jobs.celery_app worker -Q user-sync --concurrency 1
"""

import asyncio
import logging

from celery import Celery
from celery.signals import after_setup_logger

from user_index.cache.client import close_redis, create_redis
from user_index.cache.index_store import EmailIndexStore, IndexKeys
from user_index.core.config import get_settings
from user_index.core.logging import DATE_FORMAT, LOG_FORMAT
from user_index.database import create_engine_and_sessionmaker
from user_index.jobs.queue import PROCESS_TASK_NAME, SyncJob
from user_index.jobs.worker import UserSyncWorker, load_user_records

celery_app = Celery("user_index", broker=get_settings().broker_url)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    task_default_queue="user-sync",
    task_acks_late=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)


@after_setup_logger.connect
def _use_service_log_format(**kwargs):
    for handler in kwargs["logger"].handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))


async def _run_job(job: SyncJob) -> str:
    settings = get_settings()
    redis = create_redis(settings)
    engine, session_factory = create_engine_and_sessionmaker(settings.database_url)
    try:
        worker = UserSyncWorker(
            EmailIndexStore(redis, IndexKeys.from_settings(settings)),
            load_users=lambda: load_user_records(session_factory),
        )
        state = await worker.process(job)
        return state.value
    finally:
        await close_redis(redis)
        await engine.dispose()


@celery_app.task(name=PROCESS_TASK_NAME)
def process_sync_job(job: dict) -> str:
    return asyncio.run(_run_job(SyncJob.model_validate(job)))
