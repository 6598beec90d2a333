"""Clock gate: the active/expired state of a cohort, derived from wall-clock time.

Nothing here is stored. Every caller recomputes the gate from the cohort's
authoritative end timestamp at the moment it needs an answer.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Protocol


SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
ENDED_LABEL = "Ended"

Clock = Callable[[], datetime]


class GateState(StrEnum):
    """Lifecycle state of a cohort."""

    ACTIVE = "active"
    EXPIRED = "expired"


class HasEndTimestamp(Protocol):
    end_timestamp: datetime


def utc_now() -> datetime:
    """Return the current wall-clock time as an aware UTC datetime."""
    return datetime.now(UTC)


def read_clock(clock: Clock | None = None) -> datetime:
    """Read `clock`, falling back to the process wall clock."""
    return clock() if clock is not None else utc_now()


def to_iso(value: datetime) -> str:
    """Render a datetime as fixed-width UTC ISO-8601 so stored values sort lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def is_expired(cohort: HasEndTimestamp, now: datetime) -> bool:
    """Return True once `now` is strictly past the cohort's end timestamp."""
    return now > cohort.end_timestamp


def gate_state(cohort: HasEndTimestamp, now: datetime) -> GateState:
    return GateState.EXPIRED if is_expired(cohort, now) else GateState.ACTIVE


def remaining(cohort: HasEndTimestamp, now: datetime) -> timedelta | None:
    """Time left before the cohort ends, or None once it has ended.

    Display only; write paths must use is_expired().
    """
    if is_expired(cohort, now):
        return None
    return cohort.end_timestamp - now


def format_remaining(cohort: HasEndTimestamp, now: datetime) -> str:
    """Format the time left as "2d 5h", "5h 12m", "12m" or "Ended"."""
    left = remaining(cohort, now)
    if left is None or left <= timedelta(0):
        return ENDED_LABEL

    total_seconds = int(left.total_seconds())
    days = left.days
    hours = (total_seconds % 86400) // SECONDS_PER_HOUR
    minutes = (total_seconds % SECONDS_PER_HOUR) // SECONDS_PER_MINUTE

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
