"""Conflict checker: overlap, availability and lead-time checks for one proposed slot."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.availability import get_day_availability
from mytrainer.booking.errors import ConflictError
from mytrainer.booking.timeutils import get_zone, to_naive_utc, utc_to_local, utcnow
from mytrainer.config import get_settings
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer

logger = logging.getLogger(__name__)

# Sessions in these states no longer hold their slot
INACTIVE_STATUSES = ("cancelled", "no-show")

MSG_BOOKED = "Timeslot already booked"
MSG_UNAVAILABLE = "Trainer not available at this time"
MSG_WARNING = "Within 24-hour booking window"


class SlotStatus(StrEnum):
    OK = "ok"
    CONFLICT = "conflict"
    WARNING = "warning"


@dataclass(frozen=True)
class SlotCheck:
    status: SlotStatus
    message: str | None = None

    @property
    def is_conflict(self) -> bool:
        return self.status is SlotStatus.CONFLICT

    @property
    def is_warning(self) -> bool:
        return self.status is SlotStatus.WARNING

    def raise_for_conflict(self) -> None:
        if self.is_conflict:
            raise ConflictError(self.message or MSG_BOOKED)


async def find_overlapping_sessions(
    session: AsyncSession,
    trainer_id: int,
    start: datetime,
    duration: timedelta,
    exclude_session_id: int | None = None,
) -> list[TrainingSession]:
    """Active sessions whose [start, start+duration) intersects the proposed window.

    All sessions share the same fixed duration, so an existing session overlaps
    iff existing_start ∈ (start - duration, start + duration).
    """
    start = to_naive_utc(start)
    stmt = select(TrainingSession).where(
        TrainingSession.trainer_id == trainer_id,
        TrainingSession.status.not_in(INACTIVE_STATUSES),
        TrainingSession.scheduled_at > start - duration,
        TrainingSession.scheduled_at < start + duration,
    )
    if exclude_session_id is not None:
        stmt = stmt.where(TrainingSession.id != exclude_session_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def is_within_availability(
    session: AsyncSession, trainer: Trainer, start: datetime, duration: timedelta
) -> bool:
    """True when the whole session window fits inside one available interval."""
    local_start = utc_to_local(to_naive_utc(start), get_zone(trainer.timezone))
    local_end = local_start + duration
    intervals = await get_day_availability(session, trainer.id, local_start.date())
    return any(iv.contains(local_start, local_end) for iv in intervals)


async def check_slot(
    session: AsyncSession,
    trainer: Trainer,
    start: datetime,
    *,
    exclude_session_id: int | None = None,
    now: datetime | None = None,
) -> SlotCheck:
    """Check a proposed session start (UTC) for `trainer`.

    Short-circuits on the first failure: overlap, then availability. A slot
    that passes both but starts within the warning window yields a non-blocking
    `warning`. Existing out-of-hours sessions are never re-validated here.
    """
    settings = get_settings()
    duration = timedelta(minutes=settings.session_duration_minutes)
    start = to_naive_utc(start)
    now = to_naive_utc(now) if now is not None else utcnow()

    overlapping = await find_overlapping_sessions(
        session, trainer.id, start, duration, exclude_session_id
    )
    if overlapping:
        logger.info(
            "Slot %s for trainer %s overlaps session(s) %s",
            start,
            trainer.id,
            [s.id for s in overlapping],
        )
        return SlotCheck(SlotStatus.CONFLICT, MSG_BOOKED)

    if not await is_within_availability(session, trainer, start, duration):
        return SlotCheck(SlotStatus.CONFLICT, MSG_UNAVAILABLE)

    lead = start - now
    if timedelta(0) < lead < timedelta(hours=settings.booking_warning_hours):
        return SlotCheck(SlotStatus.WARNING, MSG_WARNING)
    return SlotCheck(SlotStatus.OK)
