from __future__ import annotations

import math
from collections.abc import Iterable

RATING_PRECISION = 2


def compute_rating(ratings: Iterable[float]) -> float:
    """Mean of all review ratings at display precision, 0.0 when there are none."""
    values = [float(rating) for rating in ratings]
    if not values:
        return 0.0
    return round(math.fsum(values) / len(values), RATING_PRECISION)
