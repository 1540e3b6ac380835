"""Time source used for deadline comparisons."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Returns the current time as integer Unix seconds."""

    def now(self) -> int: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> int:
        return int(datetime.now(UTC).timestamp())
