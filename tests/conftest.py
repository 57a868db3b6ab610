"""Shared pytest fixtures for user-index tests."""

from __future__ import annotations

import os

os.environ.setdefault("ENV_MODE", "test")
os.environ.setdefault("SYNC_TICK_SECONDS", "0")

from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer

from user_index.cache.index_store import EmailIndexStore
from user_index.core.errors import SyncQueueUnavailableError
from user_index.database import create_db_and_tables, create_engine_and_sessionmaker
from user_index.jobs.queue import SyncJob
from user_index.models import UserRecord


class RecordingQueue:
    """Stands in for the Celery-backed queue and keeps every job."""

    def __init__(self):
        self.jobs: list[SyncJob] = []

    async def add(self, job: SyncJob) -> str:
        self.jobs.append(job)
        return job.job_id


class BrokenQueue:
    async def add(self, job: SyncJob) -> str:
        raise SyncQueueUnavailableError("broker down")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def redis_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def redis(redis_server: FakeServer) -> FakeAsyncRedis:
    return FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def down_redis() -> FakeAsyncRedis:
    """A client whose every command fails with ConnectionError."""
    server = FakeServer()
    server.connected = False
    return FakeAsyncRedis(server=server, decode_responses=True)


@pytest.fixture
def store(redis: FakeAsyncRedis) -> EmailIndexStore:
    return EmailIndexStore(redis)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "users.db"


@pytest_asyncio.fixture
async def session_factory(db_path: Path):
    engine, factory = create_engine_and_sessionmaker(f"sqlite+aiosqlite:///{db_path}")
    await create_db_and_tables(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def demo_users() -> list[UserRecord]:
    return [
        UserRecord(id="1", email="alice@demo.com", name="Alice"),
        UserRecord(id="2", email="alan@demo.com", name="Alan"),
    ]
