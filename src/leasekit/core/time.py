from __future__ import annotations

"""
leasekit.core.time
==================

Clock abstractions and lease timestamp encoding:
- TimeUnit: the deployment-wide unit of stored expirations.
- Clock Protocol for dependency-injection and testing.
- SystemClock: production default implementation.
- ManualClock: deterministic time control for tests.

All lease decisions compare integers in one TimeUnit. Writers that disagree on
the unit silently corrupt each other's leases; nothing here can detect that.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

from .types import Timestamp

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class TimeUnit(str, Enum):
    """Resolution of `expiration` and `now` values stored in the lease table."""

    seconds = "seconds"
    microseconds = "microseconds"

    @property
    def step(self) -> timedelta:
        if self is TimeUnit.seconds:
            return timedelta(seconds=1)
        return timedelta(microseconds=1)


def to_timestamp(dt: datetime, unit: TimeUnit) -> Timestamp:
    """
    Encode an instant as an integer count of `unit` since the epoch.

    Naive datetimes are taken as local time, like `datetime.timestamp()`.
    Integer arithmetic on timedelta keeps microsecond values exact.
    """
    return (dt.astimezone(UTC) - _EPOCH) // unit.step


def from_timestamp(ts: Timestamp, unit: TimeUnit) -> datetime:
    """Inverse of to_timestamp(): UTC datetime for a stored value."""
    return _EPOCH + ts * unit.step


class Clock(Protocol):
    """Wall clock used to compute `now` for lease conditions."""

    def now_dt(self) -> datetime: ...


class SystemClock:
    """Default production clock backed by system time."""

    def now_dt(self) -> datetime:
        return datetime.now(UTC)


class ManualClock(SystemClock):
    """
    Controllable clock for tests.

    Time starts at `start` (default: the epoch + 1 day) and moves only through
    `advance()` or `set()`. Two ManualClocks model two nodes with skewed clocks.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or (_EPOCH + timedelta(days=1))

    def now_dt(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> None:
        self._now += delta

    def set(self, dt: datetime) -> None:
        self._now = dt.astimezone(UTC)


__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "TimeUnit",
    "from_timestamp",
    "to_timestamp",
]
