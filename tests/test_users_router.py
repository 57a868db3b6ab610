"""Tests for the /users HTTP routes."""

from __future__ import annotations

import json

import pytest
from fakeredis import FakeRedis, FakeServer
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from user_index.cache.index_store import EmailIndexStore
from user_index.cache.layer import CacheLayer
from user_index.database import create_engine_and_sessionmaker
from user_index.jobs.queue import JobKind
from user_index.jobs.scheduler import UserSyncScheduler
from user_index.routers import users
from user_index.services.search import PrefixSearchReader

from conftest import RecordingQueue


def build_app(redis, db_path, queue) -> FastAPI:
    sync_engine = create_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(sync_engine)
    sync_engine.dispose()

    app = FastAPI()
    app.include_router(users.router)

    _, session_factory = create_engine_and_sessionmaker(f"sqlite+aiosqlite:///{db_path}")
    store = EmailIndexStore(redis)
    app.state.session_factory = session_factory
    app.state.cache = CacheLayer(redis)
    app.state.search_reader = PrefixSearchReader(store)
    app.state.scheduler = UserSyncScheduler(redis, queue)
    return app


@pytest.fixture
def client(redis, db_path, queue):
    # One portal, so the aiosqlite and Redis connections stay on one loop
    with TestClient(build_app(redis, db_path, queue)) as client:
        yield client


@pytest.fixture
def seed_index(redis_server: FakeServer):
    """Writes index entries through a synchronous client on the same server."""
    sync_redis = FakeRedis(server=redis_server, decode_responses=True)

    def seed(user_id: str, email: str, name: str) -> None:
        sync_redis.zadd("users:emails", {email: 0})
        sync_redis.set(
            f"user:{email}", json.dumps({"id": user_id, "name": name, "email": email})
        )

    return seed


def create(client: TestClient, name: str, email: str):
    return client.post(
        "/users/", json={"name": name, "email": email, "password": "s3cret-pass"}
    )


class TestUserRoutes:
    def test_create_user(self, client, queue):
        response = create(client, "Alice", "alice@demo.com")

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "alice@demo.com"
        assert "password_hash" not in data
        assert [job.kind for job in queue.jobs] == [JobKind.UPSERT_ONE]

    def test_create_duplicate_conflicts(self, client):
        create(client, "Alice", "alice@demo.com")

        response = create(client, "Alice Again", "alice@demo.com")

        assert response.status_code == 409

    def test_create_validates_body(self, client):
        response = client.post(
            "/users/", json={"name": "", "email": "a@demo.com", "password": "short"}
        )

        assert response.status_code == 422

    def test_get_by_email(self, client):
        create(client, "Alice", "alice@demo.com")

        response = client.get("/users/email/alice@demo.com")

        assert response.status_code == 200
        assert response.json()["name"] == "Alice"

    def test_get_by_email_not_found(self, client):
        assert client.get("/users/email/ghost@demo.com").status_code == 404

    def test_update_user(self, client):
        user_id = create(client, "Alice", "alice@demo.com").json()["id"]

        response = client.patch(f"/users/{user_id}", json={"name": " Alicia "})

        assert response.status_code == 200
        assert response.json()["name"] == "Alicia"

    def test_update_blank_name(self, client):
        user_id = create(client, "Alice", "alice@demo.com").json()["id"]

        response = client.patch(f"/users/{user_id}", json={"name": "  "})

        assert response.status_code == 422

    def test_update_unknown_user(self, client):
        response = client.patch(
            "/users/00000000-0000-0000-0000-000000000000", json={"name": "X"}
        )

        assert response.status_code == 404


class TestSearchRoute:
    def test_search_from_index(self, client, seed_index):
        seed_index("1", "alice@demo.com", "Alice")
        seed_index("2", "alan@demo.com", "Alan")
        seed_index("3", "bob@demo.com", "Bob")

        response = client.get("/users/search", params={"q": "al", "limit": 10})

        assert response.status_code == 200
        assert response.json() == [
            {"id": "2", "name": "Alan", "email": "alan@demo.com"},
            {"id": "1", "name": "Alice", "email": "alice@demo.com"},
        ]

    def test_search_caps_limit(self, client, seed_index):
        for i in range(60):
            seed_index(str(i), f"user{i:02d}@demo.com", f"User {i}")

        response = client.get("/users/search", params={"q": "user", "limit": 500})

        assert len(response.json()) == 50

    def test_search_default_limit(self, client, seed_index):
        for i in range(15):
            seed_index(str(i), f"user{i:02d}@demo.com", f"User {i}")

        response = client.get("/users/search", params={"q": "user"})

        assert len(response.json()) == 10

    def test_search_falls_back_to_database(self, client):
        create(client, "Alice", "alice@demo.com")

        response = client.get("/users/search", params={"q": "ICE@"})

        assert [u["email"] for u in response.json()] == ["alice@demo.com"]

    def test_empty_query(self, client):
        assert client.get("/users/search").json() == []


class TestSyncRoute:
    def test_trigger_then_debounce(self, client, queue):
        first = client.post("/users/sync")
        second = client.post("/users/sync")

        assert first.status_code == 202
        assert first.json() == {"scheduled": True}
        assert second.json() == {"scheduled": False}
        assert [job.kind for job in queue.jobs] == [JobKind.FULL_REBUILD]

    def test_lock_store_down(self, down_redis, db_path):
        with TestClient(build_app(down_redis, db_path, RecordingQueue())) as client:
            response = client.post("/users/sync")

        assert response.status_code == 503
