from __future__ import annotations

import threading

from common.utils import now_utc_iso
from pydantic import BaseModel


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    errors_by_code: dict[str, int]
    routes: dict[str, dict[str, float | int]]


class MetricsStore:
    """Per-application request counters; one instance lives on ``app.state``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._totals = {"requests": 0, "client_errors": 0, "server_errors": 0}
        self._errors_by_code: dict[str, int] = {}
        self._routes: dict[str, dict[str, float | int]] = {}

    def observe(
        self,
        *,
        method: str,
        route: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        key = f"{method} {route}"
        with self._lock:
            self._totals["requests"] += 1
            if 400 <= status_code < 500:
                self._totals["client_errors"] += 1
            elif status_code >= 500:
                self._totals["server_errors"] += 1

            stats = self._routes.get(key)
            if stats is None:
                stats = {"count": 0, "errors": 0, "latency_ms_total": 0.0, "latency_ms_max": 0.0}
                self._routes[key] = stats
            stats["count"] = int(stats["count"]) + 1
            if status_code >= 400:
                stats["errors"] = int(stats["errors"]) + 1
            stats["latency_ms_total"] = float(stats["latency_ms_total"]) + duration_ms
            stats["latency_ms_max"] = max(float(stats["latency_ms_max"]), duration_ms)

    def record_error(self, code: str) -> None:
        with self._lock:
            self._errors_by_code[code] = self._errors_by_code.get(code, 0) + 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            routes = {}
            for key, stats in self._routes.items():
                count = int(stats["count"])
                routes[key] = {
                    **stats,
                    "latency_ms_avg": round(float(stats["latency_ms_total"]) / count, 3),
                }
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                errors_by_code=dict(self._errors_by_code),
                routes=routes,
            )
