"""Availability resolver: weekly templates overridden by date-specific exceptions.

For a single calendar date (in the trainer's business timezone) the resolver:

1. Collects the templates for that weekday, anchors them to the date, sorts
   and merges overlapping/adjacent intervals.
2. Applies the date's exceptions in order: a full-day block clears the set, a
   partial-day block subtracts a window, an extra slot adds a window and
   re-merges.

The pure functions operate on `Interval` lists so they can be reused by the
range queries and tested without a database.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.context import Actor
from mytrainer.booking.errors import AuthorizationError, NotFoundError, ValidationError
from mytrainer.booking.timeutils import END_OF_DAY, Weekday, get_zone, local_to_utc, utc_to_local
from mytrainer.models.availability import AvailabilityException, AvailabilityTemplate
from mytrainer.models.client import Client
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer

logger = logging.getLogger(__name__)


class ExceptionType(StrEnum):
    UNAVAILABLE_FULL_DAY = "unavailable_full_day"
    UNAVAILABLE_PARTIAL_DAY = "unavailable_partial_day"
    AVAILABLE_EXTRA_SLOT = "available_extra_slot"


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open wall-clock interval [start, end)."""

    start: datetime
    end: datetime

    def contains(self, start: datetime, end: datetime) -> bool:
        return start >= self.start and end <= self.end

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


def anchor(day: date, start: time | None, end: time | None) -> Interval:
    """Anchor a time-of-day window to `day`. Missing bounds default to the full day."""
    return Interval(
        datetime.combine(day, start or time(0, 0)),
        datetime.combine(day, end or END_OF_DAY),
    )


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping or adjacent intervals into a minimal cover."""
    merged: list[Interval] = []
    for iv in sorted(intervals):
        if iv.end <= iv.start:
            continue
        if merged and iv.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, iv.end))
        else:
            merged.append(iv)
    return merged


def subtract_interval(intervals: Sequence[Interval], blocked: Interval) -> list[Interval]:
    """Remove `blocked` from every interval, splitting where it sits inside one."""
    result: list[Interval] = []
    for iv in intervals:
        if not iv.overlaps(blocked.start, blocked.end):
            result.append(iv)
            continue
        if iv.start < blocked.start:
            result.append(Interval(iv.start, blocked.start))
        if blocked.end < iv.end:
            result.append(Interval(blocked.end, iv.end))
    return result


def apply_exception(
    intervals: Sequence[Interval],
    day: date,
    exception_type: str,
    start: time | None,
    end: time | None,
) -> list[Interval]:
    """Apply one exception to the running interval set for `day`."""
    kind = ExceptionType(exception_type)
    if kind is ExceptionType.UNAVAILABLE_FULL_DAY:
        return []
    window = anchor(day, start, end)
    if kind is ExceptionType.UNAVAILABLE_PARTIAL_DAY:
        return subtract_interval(intervals, window)
    return merge_intervals([*intervals, window])


def resolve_day(
    day: date,
    templates: Iterable[AvailabilityTemplate],
    exceptions: Iterable[AvailabilityException],
) -> list[Interval]:
    """Compute the ordered, non-overlapping open ranges for `day`.

    `templates` may contain every weekday; only those matching `day` are used.
    `exceptions` may contain other dates; only those on `day` are applied,
    in the order given. A full-day block wins over every other exception on
    the same date, including extra slots listed after it.
    """
    day_exceptions = [e for e in exceptions if e.exception_date == day]
    if any(e.exception_type == ExceptionType.UNAVAILABLE_FULL_DAY for e in day_exceptions):
        return []

    weekday = Weekday.from_date(day)
    intervals = merge_intervals(
        anchor(day, t.start_time, t.end_time)
        for t in templates
        if Weekday.parse(t.day_of_week) == weekday
    )
    for exc in day_exceptions:
        intervals = apply_exception(
            intervals, day, exc.exception_type, exc.start_time, exc.end_time
        )
    return intervals


async def _load_rules(
    session: AsyncSession, trainer_id: int, start: date, end: date
) -> tuple[list[AvailabilityTemplate], list[AvailabilityException]]:
    tmpl_result = await session.execute(
        select(AvailabilityTemplate).where(AvailabilityTemplate.trainer_id == trainer_id)
    )
    exc_result = await session.execute(
        select(AvailabilityException)
        .where(
            AvailabilityException.trainer_id == trainer_id,
            AvailabilityException.exception_date >= start,
            AvailabilityException.exception_date <= end,
        )
        .order_by(AvailabilityException.id)
    )
    return list(tmpl_result.scalars().all()), list(exc_result.scalars().all())


async def get_day_availability(
    session: AsyncSession, trainer_id: int, day: date
) -> list[Interval]:
    """Resolve the trainer's available ranges for one local calendar date."""
    templates, exceptions = await _load_rules(session, trainer_id, day, day)
    return resolve_day(day, templates, exceptions)


async def get_range_availability(
    session: AsyncSession,
    trainer_id: int,
    start: date,
    end: date,
    busy: Sequence[Interval] = (),
) -> dict[date, list[Interval]]:
    """Resolve every date in [start, end], optionally subtracting `busy` windows.

    Busy windows are local wall-clock intervals (e.g. booked sessions).
    """
    templates, exceptions = await _load_rules(session, trainer_id, start, end)
    days: dict[date, list[Interval]] = {}
    current = start
    while current <= end:
        intervals = resolve_day(current, templates, exceptions)
        for window in busy:
            if window.start.date() <= current <= window.end.date():
                intervals = subtract_interval(intervals, window)
        days[current] = intervals
        current += timedelta(days=1)
    logger.debug("Resolved availability for trainer %s: %s → %s", trainer_id, start, end)
    return days


async def get_booked_windows(
    session: AsyncSession, trainer: Trainer, start: date, end: date
) -> list[Interval]:
    """Active sessions between `start` and `end` as local wall-clock intervals."""
    tz = get_zone(trainer.timezone)
    # widen by a day each side; local dates can differ from UTC dates
    lower = local_to_utc(start - timedelta(days=1), time(0, 0), tz)
    upper = local_to_utc(end + timedelta(days=2), time(0, 0), tz)
    result = await session.execute(
        select(TrainingSession.scheduled_at, TrainingSession.duration_minutes).where(
            TrainingSession.trainer_id == trainer.id,
            TrainingSession.status.not_in(("cancelled", "no-show")),
            TrainingSession.scheduled_at >= lower,
            TrainingSession.scheduled_at < upper,
        )
    )
    windows = []
    for scheduled_at, duration in result.all():
        local = utc_to_local(scheduled_at, tz)
        windows.append(Interval(local, local + timedelta(minutes=duration)))
    return sorted(windows)


async def get_free_ranges(
    session: AsyncSession, trainer: Trainer, start: date, end: date
) -> dict[date, list[Interval]]:
    """Open availability per date with booked session windows removed."""
    busy = await get_booked_windows(session, trainer, start, end)
    return await get_range_availability(session, trainer.id, start, end, busy)


async def _load_trainer(session: AsyncSession, actor: Actor, trainer_id: int) -> Trainer:
    actor.require_trainer(trainer_id, "Only the trainer can manage their availability.")
    trainer = await session.get(Trainer, trainer_id)
    if trainer is None:
        raise NotFoundError("Trainer not found.")
    return trainer


async def require_reader(session: AsyncSession, actor: Actor, trainer_id: int) -> Trainer:
    """Availability is visible to the trainer and to clients assigned to them."""
    trainer = await session.get(Trainer, trainer_id)
    if trainer is None:
        raise NotFoundError("Trainer not found.")
    if actor.is_trainer:
        allowed = actor.id == trainer_id
    else:
        client = await session.get(Client, actor.id)
        allowed = client is not None and client.trainer_id == trainer_id
    if not allowed:
        raise AuthorizationError("You can only view your own trainer's availability.")
    return trainer


async def list_templates(session: AsyncSession, trainer_id: int) -> list[AvailabilityTemplate]:
    result = await session.execute(
        select(AvailabilityTemplate)
        .where(AvailabilityTemplate.trainer_id == trainer_id)
        .order_by(AvailabilityTemplate.day_of_week, AvailabilityTemplate.start_time)
    )
    return list(result.scalars().all())


async def create_template(
    session: AsyncSession,
    actor: Actor,
    trainer_id: int,
    day_of_week: int | str,
    start_time: time,
    end_time: time,
) -> AvailabilityTemplate:
    await _load_trainer(session, actor, trainer_id)
    try:
        weekday = Weekday.parse(day_of_week)
    except ValueError as e:
        raise ValidationError(str(e)) from None
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")

    template = AvailabilityTemplate(
        trainer_id=trainer_id,
        day_of_week=int(weekday),
        start_time=start_time,
        end_time=end_time,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    logger.info(
        "Added %s template %s-%s for trainer %s",
        weekday.name.title(),
        start_time,
        end_time,
        trainer_id,
    )
    return template


async def delete_template(
    session: AsyncSession, actor: Actor, trainer_id: int, template_id: int
) -> None:
    await _load_trainer(session, actor, trainer_id)
    template = await session.get(AvailabilityTemplate, template_id)
    if template is None or template.trainer_id != trainer_id:
        raise NotFoundError("Availability template not found.")
    await session.delete(template)
    await session.commit()


async def list_exceptions(
    session: AsyncSession, trainer_id: int, start: date | None = None, end: date | None = None
) -> list[AvailabilityException]:
    stmt = select(AvailabilityException).where(AvailabilityException.trainer_id == trainer_id)
    if start is not None:
        stmt = stmt.where(AvailabilityException.exception_date >= start)
    if end is not None:
        stmt = stmt.where(AvailabilityException.exception_date <= end)
    stmt = stmt.order_by(AvailabilityException.exception_date, AvailabilityException.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_exception(
    session: AsyncSession,
    actor: Actor,
    trainer_id: int,
    exception_date: date,
    exception_type: str,
    start_time: time | None = None,
    end_time: time | None = None,
    notes: str | None = None,
) -> AvailabilityException:
    """Record a date-specific override. Windows default to the whole day."""
    await _load_trainer(session, actor, trainer_id)
    try:
        kind = ExceptionType(exception_type)
    except ValueError:
        raise ValidationError(f"Invalid exception type: {exception_type}") from None
    if kind is ExceptionType.UNAVAILABLE_FULL_DAY:
        start_time = end_time = None
    elif (start_time or time(0, 0)) >= (end_time or END_OF_DAY):
        raise ValidationError("End time must be after start time")

    exception = AvailabilityException(
        trainer_id=trainer_id,
        exception_date=exception_date,
        exception_type=str(kind),
        start_time=start_time,
        end_time=end_time,
        notes=notes,
    )
    session.add(exception)
    await session.commit()
    await session.refresh(exception)
    logger.info("Added %s exception on %s for trainer %s", kind, exception_date, trainer_id)
    return exception


async def delete_exception(
    session: AsyncSession, actor: Actor, trainer_id: int, exception_id: int
) -> None:
    await _load_trainer(session, actor, trainer_id)
    exception = await session.get(AvailabilityException, exception_id)
    if exception is None or exception.trainer_id != trainer_id:
        raise NotFoundError("Availability exception not found.")
    await session.delete(exception)
    await session.commit()
