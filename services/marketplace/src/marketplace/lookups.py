from __future__ import annotations

import sqlite3
import uuid

from marketplace.errors import NotFoundError
from marketplace.models import JobView, PublicUserProfile
from marketplace.repository import MarketplaceRepository


def parse_identifier(value: str, kind: str) -> str:
    """Canonical form of a record id; malformed ids are reported as missing records."""
    try:
        return str(uuid.UUID(value))
    except (ValueError, AttributeError, TypeError) as exc:
        raise NotFoundError(f"{kind} not found") from exc


def require_job(repository: MarketplaceRepository, job_id: str) -> sqlite3.Row:
    row = repository.get_job_row(parse_identifier(job_id, "Job"))
    if row is None:
        raise NotFoundError("Job not found")
    return row


def require_user(repository: MarketplaceRepository, user_id: str) -> str:
    canonical = parse_identifier(user_id, "User")
    if not repository.user_exists(canonical):
        raise NotFoundError("User not found")
    return canonical


def require_job_view(repository: MarketplaceRepository, job_id: str) -> JobView:
    view = repository.get_job_view(job_id)
    if view is None:
        raise NotFoundError("Job not found")
    return view


def require_public_profile(repository: MarketplaceRepository, user_id: str) -> PublicUserProfile:
    profile = repository.get_public_user_profile(user_id)
    if profile is None:
        raise NotFoundError("User not found")
    return profile
