from __future__ import annotations

import hashlib
import json
import secrets
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any

from common.utils import now_utc, now_utc_iso, to_utc_iso

from marketplace.models import (
    ApplicationView,
    AuditEvent,
    AuthIdentity,
    JobCreateRequest,
    JobView,
    PublicUserProfile,
    ReviewerSummary,
    ReviewView,
    UserProfile,
    UserRegisterRequest,
    UserSummary,
)
from marketplace.retry import StoreDeadlineExceeded, current_store_call

SORT_ORDERS = {
    "newest": "created_at DESC, rowid DESC",
    "price-low": "price ASC, created_at DESC",
    "price-high": "price DESC, created_at DESC",
    "rating": "rating DESC, created_at DESC",
}
DEFAULT_SORT = "newest"

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    phone TEXT NOT NULL,
    address TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'customer',
    bio TEXT,
    avatar TEXT NOT NULL DEFAULT '',
    skills_json TEXT NOT NULL DEFAULT '[]',
    rating REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT NOT NULL,
    details TEXT,
    price REAL NOT NULL CHECK (price >= 0),
    location TEXT NOT NULL,
    deadline TEXT NOT NULL,
    requirements_json TEXT NOT NULL DEFAULT '[]',
    tags_json TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'active',
    owner_id TEXT NOT NULL REFERENCES users(id),
    rating REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_title ON jobs(title);

CREATE TABLE IF NOT EXISTS job_applications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id),
    status TEXT NOT NULL DEFAULT 'pending',
    applied_at TEXT NOT NULL,
    UNIQUE (job_id, user_id)
);

CREATE TABLE IF NOT EXISTS job_reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL REFERENCES users(id),
    rating REAL NOT NULL CHECK (rating >= 0 AND rating <= 5),
    comment TEXT,
    reviewed_at TEXT NOT NULL,
    UNIQUE (job_id, user_id)
);

CREATE TABLE IF NOT EXISTS user_reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    target_user_id TEXT NOT NULL REFERENCES users(id),
    reviewer_id TEXT NOT NULL REFERENCES users(id),
    rating REAL NOT NULL CHECK (rating >= 0 AND rating <= 5),
    comment TEXT,
    reviewed_at TEXT NOT NULL,
    UNIQUE (target_user_id, reviewer_id)
);

CREATE TABLE IF NOT EXISTS user_jobs_posted (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES users(id),
    job_id TEXT NOT NULL REFERENCES jobs(id),
    UNIQUE (user_id, job_id)
);

CREATE TABLE IF NOT EXISTS user_jobs_applied (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES users(id),
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    UNIQUE (user_id, job_id)
);

CREATE TABLE IF NOT EXISTS session_tokens (
    token_id TEXT PRIMARY KEY,
    token_hash TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked_at TEXT,
    last_used_at TEXT,
    last_used_ip TEXT,
    last_used_user_agent TEXT
);

CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    occurred_at TEXT NOT NULL,
    request_id TEXT,
    method TEXT NOT NULL,
    path TEXT NOT NULL,
    action TEXT NOT NULL,
    source_ip TEXT,
    user_agent TEXT,
    actor_id TEXT,
    status TEXT NOT NULL,
    message TEXT
);
"""


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class MarketplaceRepository:
    def __init__(self, database_path: str, *, timeout: float = 5.0) -> None:
        self.database_path = Path(database_path)
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(
                self.database_path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(SCHEMA)

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Serialize a unit of work; nested calls join the outermost transaction.

        Inside a deadline-bound store call, waiting for the lock, BEGIN and
        COMMIT all give up with StoreDeadlineExceeded once time runs out, and
        the open transaction is rolled back.
        """
        call = current_store_call()
        wait = -1 if call is None else max(call.remaining(), 0)
        if not self._lock.acquire(timeout=wait):
            raise StoreDeadlineExceeded("Timed out waiting for the store lock")
        try:
            outermost = self._depth == 0
            if outermost:
                if call is not None:
                    call.check()
                self.connection.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
                if outermost:
                    if call is not None:
                        call.check()
                    self.connection.execute("COMMIT")
                    if call is not None:
                        call.committed = True
            except BaseException:
                if outermost and self.connection.in_transaction:
                    self.connection.execute("ROLLBACK")
                raise
            finally:
                self._depth -= 1
        finally:
            self._lock.release()

    def ping(self) -> bool:
        with self._lock:
            return self.connection.execute("SELECT 1 AS ok").fetchone()["ok"] == 1

    # Users

    def insert_user(
        self,
        payload: UserRegisterRequest,
        *,
        user_id: str,
        password_hash: str,
    ) -> None:
        with self.transaction():
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO users (
                    id,
                    name,
                    email,
                    password_hash,
                    phone,
                    address,
                    role,
                    bio,
                    avatar,
                    skills_json,
                    rating,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    user_id,
                    payload.name,
                    payload.email,
                    password_hash,
                    payload.phone,
                    payload.address,
                    payload.role,
                    payload.bio,
                    payload.avatar,
                    json.dumps(payload.skills),
                    now,
                    now,
                ),
            )

    def user_exists(self, user_id: str) -> bool:
        with self._lock:
            row = self.connection.execute(
                "SELECT 1 FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
            return row is not None

    def get_credentials(self, email: str) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(
                "SELECT id, role, password_hash FROM users WHERE email = ?",
                (email,),
            ).fetchone()

    def update_user(self, user_id: str, changes: dict[str, Any]) -> None:
        columns = {
            "name": "name",
            "phone": "phone",
            "address": "address",
            "bio": "bio",
            "avatar": "avatar",
            "skills": "skills_json",
        }
        assignments: list[str] = []
        params: list[Any] = []
        for field, value in changes.items():
            column = columns[field]
            assignments.append(f"{column} = ?")
            params.append(json.dumps(value) if field == "skills" else value)
        assignments.append("updated_at = ?")
        params.append(now_utc_iso())
        params.append(user_id)
        with self.transaction():
            self.connection.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    id,
                    name,
                    email,
                    phone,
                    address,
                    role,
                    bio,
                    avatar,
                    skills_json,
                    rating,
                    created_at,
                    updated_at
                FROM users
                WHERE id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return UserProfile(
                id=row["id"],
                name=row["name"],
                email=row["email"],
                phone=row["phone"],
                address=row["address"],
                role=row["role"],
                bio=row["bio"],
                avatar=row["avatar"],
                skills=json.loads(row["skills_json"]),
                rating=float(row["rating"]),
                reviews=self.list_user_reviews(user_id),
                jobs_posted=self.list_jobs_posted(user_id),
                jobs_applied=self.list_jobs_applied(user_id),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    def get_public_user_profile(self, user_id: str) -> PublicUserProfile | None:
        profile = self.get_user_profile(user_id)
        if profile is None:
            return None
        return PublicUserProfile.model_validate(profile.model_dump())

    def list_jobs_posted(self, user_id: str) -> list[str]:
        with self._lock:
            cursor = self.connection.execute(
                "SELECT job_id FROM user_jobs_posted WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            return [row["job_id"] for row in cursor.fetchall()]

    def list_jobs_applied(self, user_id: str) -> list[str]:
        with self._lock:
            cursor = self.connection.execute(
                "SELECT job_id FROM user_jobs_applied WHERE user_id = ? ORDER BY id",
                (user_id,),
            )
            return [row["job_id"] for row in cursor.fetchall()]

    def add_job_posted(self, user_id: str, job_id: str) -> None:
        with self.transaction():
            self.connection.execute(
                "INSERT INTO user_jobs_posted (user_id, job_id) VALUES (?, ?)",
                (user_id, job_id),
            )

    def remove_job_posted(self, user_id: str, job_id: str) -> bool:
        with self.transaction():
            cursor = self.connection.execute(
                "DELETE FROM user_jobs_posted WHERE user_id = ? AND job_id = ?",
                (user_id, job_id),
            )
            return cursor.rowcount > 0

    def add_job_applied(self, user_id: str, job_id: str) -> None:
        with self.transaction():
            self.connection.execute(
                """
                INSERT INTO user_jobs_applied (user_id, job_id)
                VALUES (?, ?)
                ON CONFLICT(user_id, job_id) DO NOTHING
                """,
                (user_id, job_id),
            )

    def have_worked_together(self, first_user_id: str, second_user_id: str) -> bool:
        """True when one user owns a job on which the other holds an accepted application."""
        with self._lock:
            row = self.connection.execute(
                """
                SELECT 1
                FROM jobs j
                JOIN job_applications a ON a.job_id = j.id
                WHERE a.status = 'accepted'
                  AND (
                    (j.owner_id = ? AND a.user_id = ?)
                    OR (j.owner_id = ? AND a.user_id = ?)
                  )
                LIMIT 1
                """,
                (first_user_id, second_user_id, second_user_id, first_user_id),
            ).fetchone()
            return row is not None

    def insert_user_review(
        self,
        target_user_id: str,
        reviewer_id: str,
        *,
        rating: float,
        comment: str | None,
    ) -> None:
        with self.transaction():
            self.connection.execute(
                """
                INSERT INTO user_reviews (
                    target_user_id,
                    reviewer_id,
                    rating,
                    comment,
                    reviewed_at
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (target_user_id, reviewer_id, rating, comment, now_utc_iso()),
            )

    def list_user_review_ratings(self, user_id: str) -> list[float]:
        with self._lock:
            cursor = self.connection.execute(
                "SELECT rating FROM user_reviews WHERE target_user_id = ? ORDER BY id",
                (user_id,),
            )
            return [float(row["rating"]) for row in cursor.fetchall()]

    def set_user_rating(self, user_id: str, rating: float) -> None:
        with self.transaction():
            self.connection.execute(
                "UPDATE users SET rating = ?, updated_at = ? WHERE id = ?",
                (rating, now_utc_iso(), user_id),
            )

    def list_user_reviews(self, user_id: str) -> list[ReviewView]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT r.reviewer_id, r.rating, r.comment, r.reviewed_at, u.name, u.avatar
                FROM user_reviews r
                JOIN users u ON u.id = r.reviewer_id
                WHERE r.target_user_id = ?
                ORDER BY r.id
                """,
                (user_id,),
            )
            return [
                ReviewView(
                    reviewer=ReviewerSummary(
                        id=row["reviewer_id"],
                        name=row["name"],
                        avatar=row["avatar"],
                    ),
                    rating=float(row["rating"]),
                    comment=row["comment"],
                    reviewed_at=row["reviewed_at"],
                )
                for row in cursor.fetchall()
            ]

    # Jobs

    def job_title_exists(self, title: str) -> bool:
        with self._lock:
            row = self.connection.execute(
                "SELECT 1 FROM jobs WHERE title = ? LIMIT 1",
                (title,),
            ).fetchone()
            return row is not None

    def insert_job(self, payload: JobCreateRequest, *, job_id: str, owner_id: str) -> None:
        with self.transaction():
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO jobs (
                    id,
                    title,
                    category,
                    description,
                    details,
                    price,
                    location,
                    deadline,
                    requirements_json,
                    tags_json,
                    status,
                    owner_id,
                    rating,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, 0, ?, ?)
                """,
                (
                    job_id,
                    payload.title,
                    payload.category,
                    payload.description,
                    payload.details,
                    payload.price,
                    payload.location,
                    to_utc_iso(payload.deadline),
                    json.dumps(payload.requirements),
                    json.dumps(payload.tags),
                    owner_id,
                    now,
                    now,
                ),
            )

    def get_job_row(self, job_id: str) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(
                "SELECT * FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()

    def update_job(self, job_id: str, changes: dict[str, Any]) -> None:
        columns = {
            "title": "title",
            "category": "category",
            "description": "description",
            "details": "details",
            "price": "price",
            "location": "location",
            "deadline": "deadline",
            "requirements": "requirements_json",
            "tags": "tags_json",
            "status": "status",
        }
        assignments: list[str] = []
        params: list[Any] = []
        for field, value in changes.items():
            assignments.append(f"{columns[field]} = ?")
            if field in ("requirements", "tags"):
                value = json.dumps(value)
            elif field == "deadline":
                value = to_utc_iso(value)
            params.append(value)
        assignments.append("updated_at = ?")
        params.append(now_utc_iso())
        params.append(job_id)
        with self.transaction():
            self.connection.execute(
                f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )

    def delete_job(self, job_id: str) -> bool:
        with self.transaction():
            cursor = self.connection.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            return cursor.rowcount > 0

    def search_jobs(
        self,
        *,
        query: str | None,
        category: str | None,
        location: str | None,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[JobView], int]:
        filters = ["status = 'active'"]
        params: list[Any] = []
        if query:
            pattern = like_pattern(query)
            filters.append(
                """(
                    lower(title) LIKE ? ESCAPE '\\'
                    OR lower(description) LIKE ? ESCAPE '\\'
                    OR EXISTS (
                        SELECT 1 FROM json_each(jobs.tags_json)
                        WHERE lower(json_each.value) LIKE ? ESCAPE '\\'
                    )
                )"""
            )
            params.extend([pattern, pattern, pattern])
        if category:
            filters.append("category = ?")
            params.append(category)
        if location:
            filters.append("lower(location) LIKE ? ESCAPE '\\'")
            params.append(like_pattern(location))
        where = " AND ".join(filters)
        order_by = SORT_ORDERS.get(sort, SORT_ORDERS[DEFAULT_SORT])

        with self._lock:
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM jobs WHERE {where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            cursor = self.connection.execute(
                f"SELECT * FROM jobs WHERE {where} ORDER BY {order_by} LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            return [self._to_job_view(row) for row in cursor.fetchall()], total

    def get_job_view(self, job_id: str) -> JobView | None:
        with self._lock:
            row = self.get_job_row(job_id)
            if row is None:
                return None
            return self._to_job_view(row)

    # Applications

    def get_application(self, job_id: str, user_id: str) -> sqlite3.Row | None:
        with self._lock:
            return self.connection.execute(
                """
                SELECT job_id, user_id, status, applied_at
                FROM job_applications
                WHERE job_id = ? AND user_id = ?
                """,
                (job_id, user_id),
            ).fetchone()

    def insert_application(self, job_id: str, user_id: str) -> None:
        with self.transaction():
            self.connection.execute(
                """
                INSERT INTO job_applications (job_id, user_id, status, applied_at)
                VALUES (?, ?, 'pending', ?)
                """,
                (job_id, user_id, now_utc_iso()),
            )

    def set_application_status(self, job_id: str, user_id: str, status: str) -> None:
        with self.transaction():
            self.connection.execute(
                "UPDATE job_applications SET status = ? WHERE job_id = ? AND user_id = ?",
                (status, job_id, user_id),
            )
            self.connection.execute(
                "UPDATE jobs SET updated_at = ? WHERE id = ?",
                (now_utc_iso(), job_id),
            )

    # Job reviews

    def insert_job_review(
        self,
        job_id: str,
        user_id: str,
        *,
        rating: float,
        comment: str | None,
    ) -> None:
        with self.transaction():
            self.connection.execute(
                """
                INSERT INTO job_reviews (job_id, user_id, rating, comment, reviewed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (job_id, user_id, rating, comment, now_utc_iso()),
            )

    def list_job_review_ratings(self, job_id: str) -> list[float]:
        with self._lock:
            cursor = self.connection.execute(
                "SELECT rating FROM job_reviews WHERE job_id = ? ORDER BY id",
                (job_id,),
            )
            return [float(row["rating"]) for row in cursor.fetchall()]

    def set_job_rating(self, job_id: str, rating: float) -> None:
        with self.transaction():
            self.connection.execute(
                "UPDATE jobs SET rating = ?, updated_at = ? WHERE id = ?",
                (rating, now_utc_iso(), job_id),
            )

    # Session tokens

    def create_session_token(self, user_id: str, *, ttl_days: int) -> tuple[str, str]:
        with self.transaction():
            created = now_utc()
            raw_token = f"mp_{secrets.token_urlsafe(32)}"
            expires_at = to_utc_iso(created + timedelta(days=ttl_days))
            self.connection.execute(
                """
                INSERT INTO session_tokens (
                    token_id,
                    token_hash,
                    user_id,
                    created_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), hash_token(raw_token), user_id, to_utc_iso(created), expires_at),
            )
            return raw_token, expires_at

    def resolve_session_token(self, token_value: str) -> AuthIdentity | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT t.token_id, t.user_id, u.role
                FROM session_tokens t
                JOIN users u ON u.id = t.user_id
                WHERE t.token_hash = ?
                  AND t.revoked_at IS NULL
                  AND t.expires_at > ?
                """,
                (hash_token(token_value), now_utc_iso()),
            ).fetchone()
            if row is None:
                return None
            return AuthIdentity(user_id=row["user_id"], role=row["role"], token_id=row["token_id"])

    def touch_session_token(
        self,
        token_id: str,
        *,
        source_ip: str | None,
        user_agent: str | None,
    ) -> None:
        with self.transaction():
            self.connection.execute(
                """
                UPDATE session_tokens
                SET
                    last_used_at = ?,
                    last_used_ip = ?,
                    last_used_user_agent = ?
                WHERE token_id = ?
                """,
                (now_utc_iso(), source_ip, user_agent, token_id),
            )

    def revoke_session_token(self, token_id: str) -> bool:
        with self.transaction():
            cursor = self.connection.execute(
                """
                UPDATE session_tokens
                SET revoked_at = ?
                WHERE token_id = ? AND revoked_at IS NULL
                """,
                (now_utc_iso(), token_id),
            )
            return cursor.rowcount > 0

    # Audit trail

    def record_audit_event(
        self,
        *,
        request_id: str | None,
        method: str,
        path: str,
        action: str,
        source_ip: str | None,
        user_agent: str | None,
        actor_id: str | None,
        status: str,
        message: str | None,
    ) -> int:
        with self.transaction():
            cursor = self.connection.execute(
                """
                INSERT INTO audit_events (
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    actor_id,
                    status,
                    message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now_utc_iso(),
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    actor_id,
                    status,
                    message,
                ),
            )
            return int(cursor.lastrowid)

    def list_audit_events(
        self,
        *,
        limit: int,
        action: str | None,
        status: str | None,
    ) -> list[AuditEvent]:
        with self._lock:
            query = """
                SELECT
                    id AS event_id,
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    actor_id,
                    status,
                    message
                FROM audit_events
            """
            params: list[Any] = []
            filters: list[str] = []
            if action:
                filters.append("action = ?")
                params.append(action)
            if status:
                filters.append("status = ?")
                params.append(status)
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [AuditEvent(**dict(row)) for row in cursor.fetchall()]

    def _user_summary(self, user_id: str) -> UserSummary:
        row = self.connection.execute(
            "SELECT id, name, avatar, rating FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        return UserSummary(
            id=row["id"],
            name=row["name"],
            avatar=row["avatar"],
            rating=float(row["rating"]),
        )

    def _to_job_view(self, row: sqlite3.Row) -> JobView:
        applications = self.connection.execute(
            """
            SELECT a.user_id, a.status, a.applied_at, u.name, u.avatar, u.rating
            FROM job_applications a
            JOIN users u ON u.id = a.user_id
            WHERE a.job_id = ?
            ORDER BY a.id
            """,
            (row["id"],),
        ).fetchall()
        reviews = self.connection.execute(
            """
            SELECT r.user_id, r.rating, r.comment, r.reviewed_at, u.name, u.avatar
            FROM job_reviews r
            JOIN users u ON u.id = r.user_id
            WHERE r.job_id = ?
            ORDER BY r.id
            """,
            (row["id"],),
        ).fetchall()
        return JobView(
            id=row["id"],
            title=row["title"],
            category=row["category"],
            description=row["description"],
            details=row["details"],
            price=float(row["price"]),
            location=row["location"],
            deadline=row["deadline"],
            requirements=json.loads(row["requirements_json"]),
            tags=json.loads(row["tags_json"]),
            status=row["status"],
            owner=self._user_summary(row["owner_id"]),
            applications=[
                ApplicationView(
                    applicant=UserSummary(
                        id=item["user_id"],
                        name=item["name"],
                        avatar=item["avatar"],
                        rating=float(item["rating"]),
                    ),
                    status=item["status"],
                    applied_at=item["applied_at"],
                )
                for item in applications
            ],
            reviews=[
                ReviewView(
                    reviewer=ReviewerSummary(
                        id=item["user_id"],
                        name=item["name"],
                        avatar=item["avatar"],
                    ),
                    rating=float(item["rating"]),
                    comment=item["comment"],
                    reviewed_at=item["reviewed_at"],
                )
                for item in reviews
            ],
            rating=float(row["rating"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
