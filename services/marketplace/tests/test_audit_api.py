from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from marketplace.main import create_app

pytestmark = pytest.mark.integration

ADMIN_HEADERS = {"x-admin-key": "admin-secret"}


def test_write_endpoints_return_audit_event_ids(client, register_user, post_job) -> None:
    owner = register_user()
    worker = register_user()
    job = post_job(owner)

    applied = client.post(f"/jobs/{job['id']}/apply", headers=worker["headers"])

    assert applied.headers.get("x-audit-event-id")
    events = client.get("/audit-events", headers=ADMIN_HEADERS).json()
    apply_event = next(event for event in events if event["action"] == "job_apply")
    assert str(apply_event["event_id"]) == applied.headers["x-audit-event-id"]
    assert apply_event["actor_id"] == worker["id"]
    assert apply_event["status"] == "ok"
    assert apply_event["request_id"] == applied.headers["x-request-id"]


def test_rejected_writes_are_audited_with_error_code(client, register_user, post_job) -> None:
    owner = register_user()
    intruder = register_user()
    job = post_job(owner)

    anonymous = client.post("/jobs", json={})
    forbidden = client.delete(f"/jobs/{job['id']}", headers=intruder["headers"])

    assert anonymous.status_code == 422
    assert forbidden.status_code == 403
    assert forbidden.headers.get("x-audit-event-id")

    events = client.get(
        "/audit-events",
        headers=ADMIN_HEADERS,
        params={"action": "job_delete"},
    ).json()
    assert len(events) == 1
    assert events[0]["status"] == "forbidden"
    assert events[0]["actor_id"] == intruder["id"]
    assert events[0]["message"] == "Not authorized to delete this job"


def test_unauthenticated_write_is_audited(client, job_payload) -> None:
    response = client.post("/jobs", json=job_payload(), headers={"x-api-key": "mp_bogus"})

    assert response.status_code == 401
    events = client.get(
        "/audit-events",
        headers=ADMIN_HEADERS,
        params={"status": "unauthorized"},
    ).json()
    assert [event["action"] for event in events] == ["job_create"]
    assert events[0]["actor_id"] is None


def test_audit_events_require_admin_key(client) -> None:
    missing = client.get("/audit-events")
    wrong = client.get("/audit-events", headers={"x-admin-key": "guess"})

    assert missing.status_code == 401
    assert wrong.status_code == 401

    events = client.get(
        "/audit-events",
        headers=ADMIN_HEADERS,
        params={"action": "audit_events_list"},
    ).json()
    assert [event["status"] for event in events] == ["unauthorized", "unauthorized"]


def test_audit_events_disabled_without_admin_key(tmp_path: Path) -> None:
    app = create_app(database_path=str(tmp_path / "no-admin.sqlite3"), password_rounds=4)
    with TestClient(app) as client:
        response = client.get("/audit-events", headers={"x-admin-key": "anything"})

    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_audit_events_respect_limit(client, register_user) -> None:
    register_user()
    register_user()

    events = client.get("/audit-events", headers=ADMIN_HEADERS, params={"limit": 2}).json()

    assert len(events) == 2
    assert events[0]["event_id"] > events[1]["event_id"]


def test_failed_audit_write_keeps_successful_response(
    client,
    register_user,
    job_payload,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    owner = register_user()
    attempts = []

    def broken_audit(**_fields) -> int:
        attempts.append(1)
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(client.app.state.repository, "record_audit_event", broken_audit)

    created = client.post("/jobs", json=job_payload(), headers=owner["headers"])

    assert created.status_code == 201
    assert "x-audit-event-id" not in created.headers
    assert len(attempts) == 2
    assert client.get(f"/jobs/{created.json()['id']}").status_code == 200


def test_failed_audit_write_keeps_rejection_code(
    client,
    register_user,
    post_job,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    owner = register_user()
    intruder = register_user()
    job = post_job(owner)

    def broken_audit(**_fields) -> int:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(client.app.state.repository, "record_audit_event", broken_audit)

    forbidden = client.delete(f"/jobs/{job['id']}", headers=intruder["headers"])

    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "forbidden"
    assert "x-audit-event-id" not in forbidden.headers
