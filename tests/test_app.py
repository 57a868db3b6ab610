"""Tests for application wiring: settings, logging, the root route."""

from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from user_index.core.config import Settings
from user_index.core.logging import configure_logging
from user_index.jobs.queue import FULL_REBUILD_JOB_ID, PROCESS_TASK_NAME, JobKind, SyncJob
from user_index.models import UserRecord


def test_root():
    from user_index.main import app

    # No context manager: the lifespan (Redis, Postgres) never starts
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_settings_defaults():
    settings = Settings()

    assert settings.sync_lock_ttl_ms == 30_000
    assert settings.sync_min_interval_ms == 300_000
    assert settings.users_emails_key == "users:emails"
    assert settings.broker_url == settings.redis_dsn


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("SYNC_MIN_INTERVAL_MS", "1000")
    monkeypatch.setenv("CELERY_BROKER_URL", "redis://broker:6379/1")

    settings = Settings()

    assert settings.sync_min_interval_ms == 1000
    assert settings.broker_url == "redis://broker:6379/1"


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        configure_logging(Settings(env_mode="production"))
        configure_logging(Settings(env_mode="production"))

        added = [h for h in root.handlers if h not in before]
        assert len(added) == 1
        assert root.level == logging.INFO
    finally:
        for handler in root.handlers:
            if handler not in before:
                root.removeHandler(handler)
        configure_logging(Settings(env_mode="test"))


def test_celery_task_registered():
    from user_index.jobs.celery_app import celery_app

    assert PROCESS_TASK_NAME in celery_app.tasks
    assert celery_app.conf.task_acks_late is True


def test_sync_job_constructors():
    rebuild = SyncJob.full_rebuild()
    upsert = SyncJob.upsert_one(UserRecord(id="5", email="e@demo.com", name="E"))

    assert rebuild.kind is JobKind.FULL_REBUILD
    assert rebuild.job_id == FULL_REBUILD_JOB_ID
    assert rebuild.payload == {}
    assert upsert.model_dump(mode="json") == {
        "kind": "upsert-one",
        "job_id": "sync-user:5",
        "payload": {"id": "5", "email": "e@demo.com", "name": "E"},
    }
