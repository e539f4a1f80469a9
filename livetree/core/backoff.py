"""
Backoff state shared by the stream and one-shot requests.
"""

from __future__ import annotations

import time
from typing import Callable

__all__ = [
    "Backoff",
    "OVERLOAD_STATUSES",
]

OVERLOAD_STATUSES = frozenset({408, 429, 503})
"""
Status codes indicating the server is temporarily overloaded: request timeout,
too many requests and service unavailable.
"""

DEFAULT_BACKOFF = 1.0
MAX_BACKOFF = 64.0


class Backoff:
    """
    Tracks how long to wait before retrying after the server reported
    overload.

    There are two mechanisms:

    - Reconnect interval for the stream, doubled after every transient stream
    failure and capped at `max_interval`
    - Lockout deadline for one-shot requests, extended by
    `default × escalation` after every overload response

    Any successful response resets both.
    """

    default: float
    max_interval: float

    interval: float
    """
    Seconds to wait before the next stream reconnect.
    """

    deadline: float | None
    """
    Clock time before which requests must not be attempted.
    """

    escalation: int
    """
    Multiplier for the next lockout extension.
    """

    _clock: Callable[[], float]

    def __init__(
        self,
        default: float = DEFAULT_BACKOFF,
        max_interval: float = MAX_BACKOFF,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert default > 0
        assert max_interval >= default

        self.default = default
        self.max_interval = max_interval
        self._clock = clock
        self.reset()

    def __str__(self):
        return f"Backoff: interval={self.interval}, deadline={self.deadline}, escalation={self.escalation}"

    def reset(self):
        self.interval = self.default
        self.deadline = None
        self.escalation = 1

    def next_interval(self) -> float:
        """
        Get interval to wait before reconnecting, doubling it for next time.
        """
        interval = self.interval
        self.interval = min(self.interval * 2, self.max_interval)
        return interval

    def record_overload(self) -> float:
        """
        Extend the lockout after an overload response.

        :returns: New deadline
        """
        self.deadline = self._clock() + self.default * self.escalation
        self.escalation += 1
        return self.deadline

    @property
    def remaining(self) -> float:
        """
        Seconds until the lockout expires, `0.0`{l=python} if not locked out.
        """
        if self.deadline is None:
            return 0.0
        return max(self.deadline - self._clock(), 0.0)

    @property
    def is_locked_out(self) -> bool:
        return self.remaining > 0.0
