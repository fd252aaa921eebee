from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from common.utils import (
    clean_string_list,
    normalize_whitespace,
    now_utc_iso,
    to_utc_iso,
)

pytestmark = pytest.mark.unit


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0


def test_now_utc_iso_keeps_microseconds_for_ordering() -> None:
    stamp = now_utc_iso()
    assert "." in stamp
    assert len(stamp) == len("2026-01-01T00:00:00.000000+00:00")


def test_to_utc_iso_converts_offsets_and_naive_values() -> None:
    eastern = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert to_utc_iso(eastern) == "2026-03-01T17:00:00.000000+00:00"
    assert to_utc_iso(datetime(2026, 3, 1, 12, 0)) == "2026-03-01T12:00:00.000000+00:00"


def test_normalize_whitespace_squashes_runs() -> None:
    assert normalize_whitespace("  Deep   clean \n kitchen ") == "Deep clean kitchen"


def test_clean_string_list_trims_and_drops_blanks() -> None:
    assert clean_string_list(["  ladder ", "", "   ", "gloves"]) == ["ladder", "gloves"]
    assert clean_string_list(None) == []
