from __future__ import annotations

import itertools
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from marketplace.main import create_app
from marketplace.repository import MarketplaceRepository

ADMIN_KEY = "admin-secret"


@pytest.fixture
def database_path(tmp_path: Path) -> str:
    return str(tmp_path / "marketplace.sqlite3")


@pytest.fixture
def client(database_path: str):
    app = create_app(database_path=database_path, admin_key=ADMIN_KEY, password_rounds=4)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def repository(database_path: str):
    repo = MarketplaceRepository(database_path)
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def job_payload() -> Callable[..., dict[str, Any]]:
    counter = itertools.count(1)

    def build(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": f"Deep clean of flat {next(counter)}",
            "category": "Cleaning",
            "description": "Need a deep clean of a two bedroom flat. Supplies are provided on site.",
            "price": 50,
            "location": "Leeds",
            "deadline": (datetime.now(UTC) + timedelta(days=30)).isoformat(),
            "requirements": ["Own transport", "References"],
            "tags": ["cleaning", "weekly"],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def register_user(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Register and log in a user; returns its id, token and auth headers."""
    counter = itertools.count(1)

    def register(name: str | None = None, **overrides: Any) -> dict[str, Any]:
        index = next(counter)
        payload: dict[str, Any] = {
            "name": name or f"User {index}",
            "email": f"user{index}@example.com",
            "password": "correct-horse-battery",
            "phone": "+44 113 496 0000",
            "address": f"{index} Market Street",
        }
        payload.update(overrides)
        created = client.post("/users", json=payload)
        assert created.status_code == 201, created.text
        login = client.post(
            "/auth/login",
            json={"email": payload["email"], "password": payload["password"]},
        )
        assert login.status_code == 200, login.text
        token = login.json()["token"]
        return {
            "id": created.json()["id"],
            "email": payload["email"],
            "token": token,
            "headers": {"x-api-key": token},
        }

    return register


@pytest.fixture
def post_job(
    client: TestClient,
    job_payload: Callable[..., dict[str, Any]],
) -> Callable[..., dict[str, Any]]:
    def post(owner: dict[str, Any], **overrides: Any) -> dict[str, Any]:
        response = client.post("/jobs", json=job_payload(**overrides), headers=owner["headers"])
        assert response.status_code == 201, response.text
        return response.json()

    return post
