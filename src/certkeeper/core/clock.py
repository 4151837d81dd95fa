"""Time source used for expiry comparisons."""

from __future__ import annotations

import abc
from datetime import UTC, datetime


class Clock(abc.ABC):
    """Abstract clock so renewal decisions can be tested deterministically."""

    @abc.abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)
