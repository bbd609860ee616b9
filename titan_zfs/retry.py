"""
Bounded retry and polling shared by every pipeline stage.

with_retry() is the only place where attempt counting, backoff and the
"prepare for next attempt" hook are implemented. poll_until() expresses a
stability gate as a retry over a constant interval.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from archinstall import debug, warn

from titan_zfs.errors import BootstrapError, RetryExhaustedError

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    initial: float = 10.0
    multiplier: float = 2.0
    maximum: float = 60.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        return min(self.initial * self.multiplier ** (attempt - 1), self.maximum)

    @classmethod
    def constant(cls, interval: float) -> BackoffPolicy:
        return cls(initial=interval, multiplier=1.0, maximum=interval)


class NotReady(BootstrapError):
    pass


def _always(_: BaseException) -> bool:
    return True


def with_retry(
    action: Callable[[int], T],
    *,
    max_attempts: int,
    backoff: BackoffPolicy,
    is_retryable: Callable[[BaseException], bool] = _always,
    before_retry: Callable[[int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "action",
) -> T:
    """Run ``action`` until it returns, at most ``max_attempts`` times.

    Args:
        action: Called with the 1-based attempt number; a raised
            BootstrapError counts as a failed attempt
        max_attempts: Attempt ceiling, at least 1
        backoff: Delay policy applied between attempts
        is_retryable: Errors for which this returns False propagate at once
        before_retry: Called with the number of the attempt about to start,
            after the backoff delay and before every attempt but the first
        sleep: Sleep function, replaced in tests
        description: Used in log messages

    Returns:
        Whatever ``action`` returned on the first successful attempt

    Raises:
        RetryExhaustedError: If the last attempt failed
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return action(attempt)
        except BootstrapError as e:
            if not is_retryable(e):
                raise
            if attempt >= max_attempts:
                raise RetryExhaustedError(f"{description} failed after {attempt} attempt(s): {e}", attempts=attempt, last_error=e) from e

            delay = backoff.delay(attempt)
            warn(f"{description} attempt {attempt}/{max_attempts} failed: {e}; retrying in {delay:.0f}s")
            sleep(delay)
            attempt += 1
            if before_retry is not None:
                before_retry(attempt)


def poll_until(
    check: Callable[[], bool],
    *,
    attempts: int,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "condition",
) -> bool:
    """Return True once ``check`` passes, False if it never does within ``attempts`` checks."""

    def probe(attempt: int) -> None:
        if not check():
            raise NotReady(f"{description} not reached (check {attempt}/{attempts})")

    try:
        with_retry(probe, max_attempts=attempts, backoff=BackoffPolicy.constant(interval), sleep=sleep, description=description)
    except RetryExhaustedError:
        debug(f"Gave up waiting for {description}")
        return False
    return True
