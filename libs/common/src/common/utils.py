from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime


def now_utc() -> datetime:
    return datetime.now(UTC)


def now_utc_iso() -> str:
    # Fixed-width timestamps keep lexical and chronological order identical.
    return now_utc().isoformat(timespec="microseconds")


def to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def clean_string_list(values: Iterable[str] | None) -> list[str]:
    """Trim every entry and drop the blank ones, keeping the original order."""
    if not values:
        return []
    return [value.strip() for value in values if value and value.strip()]
