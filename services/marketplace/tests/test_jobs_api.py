from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from marketplace.main import create_app

pytestmark = pytest.mark.integration


def test_create_job_starts_active_with_zero_rating(client, register_user, post_job) -> None:
    owner = register_user("Olive Owner")
    job = post_job(owner, price=50)

    assert job["status"] == "active"
    assert job["rating"] == 0
    assert job["price"] == 50
    assert job["applications"] == []
    assert job["reviews"] == []
    assert job["owner"] == {"id": owner["id"], "name": "Olive Owner", "avatar": "", "rating": 0.0}

    me = client.get("/users/me", headers=owner["headers"]).json()
    assert me["jobs_posted"] == [job["id"]]

    fetched = client.get(f"/jobs/{job['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == job["title"]


def test_job_view_never_exposes_contact_fields(client, register_user, post_job) -> None:
    owner = register_user()
    job = client.get(f"/jobs/{post_job(owner)['id']}").json()

    assert set(job["owner"]) == {"id", "name", "avatar", "rating"}


def test_create_job_requires_token(client, job_payload) -> None:
    response = client.post("/jobs", json=job_payload())

    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "Mop"},
        {"description": "Clean my kitchen floor please thanks"},
        {"description": "Too short."},
        {"price": 0},
        {"price": 100_001},
        {"deadline": (datetime.now(UTC) - timedelta(days=1)).isoformat()},
        {"deadline": (datetime.now(UTC) + timedelta(days=400)).isoformat()},
        {"requirements": ["Only one"]},
        {"requirements": ["One", "   "]},
        {"tags": ["a", "b", "c", "d", "e", "f"]},
        {"category": "Plumbing"},
    ],
)
def test_create_job_rejects_out_of_bounds_fields(
    client,
    register_user,
    job_payload,
    overrides,
) -> None:
    owner = register_user()
    response = client.post("/jobs", json=job_payload(**overrides), headers=owner["headers"])

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


def test_duplicate_title_is_a_conflict(client, register_user, post_job, job_payload) -> None:
    owner = register_user()
    other = register_user()
    post_job(owner, title="Walk two friendly dogs")

    response = client.post(
        "/jobs",
        json=job_payload(title="Walk two friendly dogs"),
        headers=other["headers"],
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "A job with this title already exists"


def test_duplicate_titles_allowed_when_uniqueness_disabled(tmp_path: Path, job_payload) -> None:
    app = create_app(
        database_path=str(tmp_path / "titles.sqlite3"),
        unique_job_titles=False,
        password_rounds=4,
    )
    with TestClient(app) as client:
        client.post(
            "/users",
            json={
                "name": "Titles",
                "email": "titles@example.com",
                "password": "correct-horse-battery",
                "phone": "0113 496 0000",
                "address": "1 Market Street",
            },
        )
        token = client.post(
            "/auth/login",
            json={"email": "titles@example.com", "password": "correct-horse-battery"},
        ).json()["token"]
        headers = {"x-api-key": token}
        first = client.post("/jobs", json=job_payload(title="Same title"), headers=headers)
        second = client.post("/jobs", json=job_payload(title="Same title"), headers=headers)

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["id"] != second.json()["id"]


def test_read_missing_or_malformed_job_is_not_found(client) -> None:
    assert client.get(f"/jobs/{uuid.uuid4()}").status_code == 404
    assert client.get("/jobs/not-a-uuid").status_code == 404


def test_owner_updates_job_fields_and_status(client, register_user, post_job) -> None:
    owner = register_user()
    job = post_job(owner)

    response = client.patch(
        f"/jobs/{job['id']}",
        json={"price": 75.5, "tags": [" garden ", "urgent"], "status": "completed"},
        headers=owner["headers"],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["price"] == 75.5
    assert body["tags"] == ["garden", "urgent"]
    assert body["status"] == "completed"
    assert body["updated_at"] > job["updated_at"]
    assert body["title"] == job["title"]


def test_non_owner_update_is_forbidden_and_job_unchanged(client, register_user, post_job) -> None:
    owner = register_user()
    intruder = register_user()
    job = post_job(owner)

    response = client.patch(
        f"/jobs/{job['id']}",
        json={"price": 1},
        headers=intruder["headers"],
    )

    assert response.status_code == 403
    assert client.get(f"/jobs/{job['id']}").json()["price"] == job["price"]


@pytest.mark.parametrize(
    "patch",
    [
        {"owner": "00000000-0000-4000-8000-000000000000"},
        {"rating": 5},
        {"applications": []},
        {"title": None},
        {"status": "archived"},
    ],
)
def test_update_rejects_protected_or_invalid_fields(client, register_user, post_job, patch) -> None:
    owner = register_user()
    job = post_job(owner)

    response = client.patch(f"/jobs/{job['id']}", json=patch, headers=owner["headers"])

    assert response.status_code == 422


def test_update_missing_job_is_not_found(client, register_user) -> None:
    owner = register_user()

    response = client.patch(f"/jobs/{uuid.uuid4()}", json={"price": 10}, headers=owner["headers"])

    assert response.status_code == 404


def test_owner_deletes_job(client, register_user, post_job) -> None:
    owner = register_user()
    job = post_job(owner)

    response = client.delete(f"/jobs/{job['id']}", headers=owner["headers"])

    assert response.status_code == 200
    assert response.json() == {"deleted": True, "job_id": job["id"]}
    assert client.get(f"/jobs/{job['id']}").status_code == 404
    assert client.get("/users/me", headers=owner["headers"]).json()["jobs_posted"] == []


def test_non_owner_delete_is_forbidden(client, register_user, post_job) -> None:
    owner = register_user()
    intruder = register_user()
    job = post_job(owner)

    response = client.delete(f"/jobs/{job['id']}", headers=intruder["headers"])

    assert response.status_code == 403
    assert client.get(f"/jobs/{job['id']}").status_code == 200
    assert client.get("/users/me", headers=owner["headers"]).json()["jobs_posted"] == [job["id"]]


def test_list_filters_by_category_and_sorts_by_price(client, register_user, post_job) -> None:
    owner = register_user()
    post_job(owner, category="Cleaning", price=80)
    post_job(owner, category="Cleaning", price=20)
    post_job(owner, category="Gardening", price=5)
    closed = post_job(owner, category="Cleaning", price=1)
    client.patch(f"/jobs/{closed['id']}", json={"status": "cancelled"}, headers=owner["headers"])
    post_job(owner, category="Cleaning", price=45)

    response = client.get(
        "/jobs",
        params={"category": "Cleaning", "sort": "price-low", "page": 1, "limit": 10},
    )

    assert response.status_code == 200
    body = response.json()
    assert [job["price"] for job in body["jobs"]] == [20, 45, 80]
    assert {job["category"] for job in body["jobs"]} == {"Cleaning"}
    assert {job["status"] for job in body["jobs"]} == {"active"}
    assert body["total_jobs"] == 3
    assert body["total_pages"] == 1
    assert body["current_page"] == 1
    assert body["page_size"] == 10


def test_list_paginates(client, register_user, post_job) -> None:
    owner = register_user()
    for price in (10, 20, 30, 40, 50):
        post_job(owner, price=price)

    second_page = client.get("/jobs", params={"sort": "price-high", "page": 2, "limit": 2}).json()
    past_end = client.get("/jobs", params={"page": 9, "limit": 2}).json()

    assert [job["price"] for job in second_page["jobs"]] == [30, 20]
    assert second_page["total_jobs"] == 5
    assert second_page["total_pages"] == 3
    assert past_end["jobs"] == []
    assert past_end["total_jobs"] == 5


def test_list_defaults_to_newest_first(client, register_user, post_job) -> None:
    owner = register_user()
    first = post_job(owner)
    second = post_job(owner)

    newest = client.get("/jobs").json()["jobs"]
    unknown_sort = client.get("/jobs", params={"sort": "cheapest"}).json()["jobs"]

    assert [job["id"] for job in newest] == [second["id"], first["id"]]
    assert [job["id"] for job in unknown_sort] == [second["id"], first["id"]]


def test_list_page_size_is_capped(client) -> None:
    body = client.get("/jobs", params={"limit": 500}).json()

    assert body["page_size"] == 100
    assert body["total_pages"] == 0


def test_list_query_matches_title_description_and_tags(client, register_user, post_job) -> None:
    owner = register_user()
    by_title = post_job(owner, title="Hedge trimming job", category="Gardening")
    by_tag = post_job(owner, tags=["Hedges"])
    by_description = post_job(
        owner,
        description="Mow the lawn and tidy the HEDGE line. Bring your own tools.",
    )
    post_job(owner, title="Walk the dog daily", category="Pet Care", tags=["dogs"])

    ids = {job["id"] for job in client.get("/jobs", params={"query": "hedge"}).json()["jobs"]}

    assert ids == {by_title["id"], by_tag["id"], by_description["id"]}


def test_list_query_treats_wildcards_literally(client, register_user, post_job) -> None:
    owner = register_user()
    post_job(owner, title="Plain title job")

    body = client.get("/jobs", params={"query": "%"}).json()

    assert body["total_jobs"] == 0


def test_list_location_is_case_insensitive_substring(client, register_user, post_job) -> None:
    owner = register_user()
    leeds = post_job(owner, location="North Leeds")
    post_job(owner, location="York")

    body = client.get("/jobs", params={"location": "leeds"}).json()

    assert [job["id"] for job in body["jobs"]] == [leeds["id"]]


def test_list_rejects_unknown_category(client) -> None:
    assert client.get("/jobs", params={"category": "Plumbing"}).status_code == 422
