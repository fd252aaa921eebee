"""
Store-call resilience: one retry for transient SQLite failures and a deadline
on threadpool calls, both surfacing as ServiceUnavailableError.

A deadline does not just stop the caller from waiting. The worker thread
refuses to open or commit a transaction once its deadline has passed, so a
timed-out write is rolled back and a retry starts from a clean store.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fastapi.concurrency import run_in_threadpool

from marketplace.errors import ServiceUnavailableError

LOGGER = logging.getLogger("marketplace.store")
T = TypeVar("T")

STORE_UNAVAILABLE_MESSAGE = "Storage is temporarily unavailable, please retry."
STORE_TIMEOUT_MESSAGE = "Storage did not respond in time, please retry."

_worker_state = threading.local()


class StoreDeadlineExceeded(Exception):
    """Raised in a worker thread whose store call ran out of time before committing."""


@dataclass
class StoreCall:
    deadline: float
    committed: bool = False

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check(self) -> None:
        if self.remaining() <= 0:
            raise StoreDeadlineExceeded("Store call ran past its deadline")


def current_store_call() -> StoreCall | None:
    return getattr(_worker_state, "call", None)


def _call_with_deadline(call: StoreCall, func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    previous = current_store_call()
    _worker_state.call = call
    try:
        result = func(*args, **kwargs)
    finally:
        _worker_state.call = previous
    if not call.committed:
        call.check()
    return result


def retry_transient(
    attempts: int = 2,
    delay: float = 0.05,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry a store operation when SQLite reports a transient failure.

    Args:
        attempts: Total number of tries, the first call included
        delay: Seconds to wait between tries

    Domain errors and integrity violations are never retried.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as exc:
                    if attempt >= attempts:
                        LOGGER.error(
                            json.dumps(
                                {
                                    "event": "store_unavailable",
                                    "operation": func.__qualname__,
                                    "attempts": attempts,
                                    "error": str(exc),
                                }
                            )
                        )
                        raise ServiceUnavailableError(STORE_UNAVAILABLE_MESSAGE) from exc
                    LOGGER.warning(
                        json.dumps(
                            {
                                "event": "store_retry",
                                "operation": func.__qualname__,
                                "attempt": attempt,
                                "error": str(exc),
                            }
                        )
                    )
                    time.sleep(delay)
            raise ServiceUnavailableError(STORE_UNAVAILABLE_MESSAGE)

        return wrapper

    return decorator


async def run_store_call(
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> T:
    """
    Run a blocking store call in the threadpool under a deadline.

    When the wait times out the worker is awaited until it settles: it either
    finished a commit that started in time, in which case its result stands,
    or it refuses to commit and the call fails with ServiceUnavailableError.
    """
    call = StoreCall(deadline=time.monotonic() + timeout)
    worker = asyncio.ensure_future(run_in_threadpool(_call_with_deadline, call, func, *args, **kwargs))
    try:
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=timeout)
        except TimeoutError:
            LOGGER.error(
                json.dumps(
                    {
                        "event": "store_timeout",
                        "operation": getattr(func, "__qualname__", repr(func)),
                        "timeout_seconds": timeout,
                    }
                )
            )
            return await worker
    except StoreDeadlineExceeded as exc:
        raise ServiceUnavailableError(STORE_TIMEOUT_MESSAGE) from exc
