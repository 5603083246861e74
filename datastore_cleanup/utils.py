from __future__ import annotations

import time
from typing import Callable

from .errors import StepTimeout


Clock = Callable[[], float]
Sleep = Callable[[float], None]


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout_seconds: float,
    poll_interval_seconds: float = 0.5,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> bool:
    """Poll *predicate* until it returns True or *timeout_seconds* elapses.

    The predicate is always evaluated at least once, and once more after the
    deadline passes so a transition that lands during the last sleep is seen.
    Returns the final predicate value.
    """
    if poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be greater than 0")

    deadline = clock() + max(float(timeout_seconds), 0.0)
    while True:
        if predicate():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(poll_interval_seconds, remaining))


class Deadline:
    """Cooperative time budget for filesystem-heavy work.

    ``Deadline(None)`` never expires, so callers can pass one unconditionally.
    """

    def __init__(self, seconds: float | None, *, clock: Clock = time.monotonic):
        self._seconds = seconds
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + float(seconds)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, what: str) -> None:
        if self.expired:
            raise StepTimeout(what, float(self._seconds or 0))
