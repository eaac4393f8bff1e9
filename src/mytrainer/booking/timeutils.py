"""Weekday and wall-clock helpers for the trainer's business timezone."""

from datetime import UTC, date, datetime, time, timedelta
from enum import IntEnum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from mytrainer.booking.errors import ValidationError

END_OF_DAY = time(23, 59)


class Weekday(IntEnum):
    """Day of week, Sunday first (0=Sunday, 6=Saturday)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, d: date) -> "Weekday":
        # date.weekday() is Monday=0
        return cls((d.weekday() + 1) % 7)

    @classmethod
    def parse(cls, value: "int | str | Weekday") -> "Weekday":
        """Accept an int, a digit string or an English day name ("monday", "Mon")."""
        if isinstance(value, int):
            return cls(value)
        text = value.strip()
        if text.isdigit():
            return cls(int(text))
        for member in cls:
            if member.name.lower().startswith(text.lower()) and len(text) >= 3:
                return member
        raise ValueError(f"Unknown weekday: {value!r}")


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        raise ValidationError(f"Unknown timezone: {name}") from None


def utcnow() -> datetime:
    """Current instant as naive UTC, the storage representation."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an instant to naive UTC. Naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def local_to_utc(day: date, wall: time, tz: ZoneInfo) -> datetime:
    """Convert a wall-clock date/time in `tz` to naive UTC.

    Uses zoneinfo so DST offsets come from the zone rules for that date.
    Ambiguous times resolve to the first occurrence (fold=0).
    """
    local = datetime.combine(day, wall).replace(tzinfo=tz)
    return local.astimezone(UTC).replace(tzinfo=None)


def utc_to_local(instant: datetime, tz: ZoneInfo) -> datetime:
    """Convert naive/aware UTC to a naive wall-clock datetime in `tz`."""
    aware = instant if instant.tzinfo is not None else instant.replace(tzinfo=UTC)
    return aware.astimezone(tz).replace(tzinfo=None)


def hours_until(instant: datetime, now: datetime) -> float:
    return (to_naive_utc(instant) - to_naive_utc(now)) / timedelta(hours=1)
