from __future__ import annotations

import pytest
from marketplace.ratings import compute_rating

pytestmark = pytest.mark.unit


def test_empty_reviews_rate_zero() -> None:
    assert compute_rating([]) == 0.0


@pytest.mark.parametrize(
    ("ratings", "expected"),
    [
        ([4], 4.0),
        ([3, 5], 4.0),
        ([5, 4, 4], 4.33),
        ([0.1, 0.2, 0.3], 0.2),
        ([0, 0, 5], 1.67),
    ],
)
def test_rating_is_rounded_mean(ratings, expected) -> None:
    assert compute_rating(ratings) == expected
