"""Availability API routes: resolved open ranges plus template/exception management."""

from datetime import date, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import get_actor
from mytrainer.booking import availability
from mytrainer.booking.availability import Interval
from mytrainer.booking.context import Actor
from mytrainer.booking.errors import ValidationError
from mytrainer.database import get_db
from mytrainer.models.availability import AvailabilityException, AvailabilityTemplate
from mytrainer.schemas.availability import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionRead,
    AvailabilityTemplateCreate,
    AvailabilityTemplateRead,
    DayAvailabilityRead,
    IntervalRead,
)

router = APIRouter(prefix="/api/trainers/{trainer_id}/availability", tags=["availability"])

MAX_RANGE_DAYS = 62


def _day(day: date, intervals: list[Interval]) -> DayAvailabilityRead:
    return DayAvailabilityRead(
        day=day, intervals=[IntervalRead(start=iv.start, end=iv.end) for iv in intervals]
    )


@router.get("", response_model=list[DayAvailabilityRead])
async def get_availability(
    trainer_id: int,
    date: date | None = None,
    start: date | None = None,
    end: date | None = None,
    free: bool = False,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[DayAvailabilityRead]:
    """Open ranges in the trainer's local time.

    Pass `date` for a single day or `start`/`end` for an inclusive range.
    With `free=true`, booked session windows are removed.
    """
    trainer = await availability.require_reader(session, actor, trainer_id)

    if date is not None:
        start = end = date
    if start is None or end is None:
        raise ValidationError("Provide either date or both start and end.")
    if end < start:
        raise ValidationError("end must not be before start")
    if end - start > timedelta(days=MAX_RANGE_DAYS):
        raise ValidationError(f"Range may span at most {MAX_RANGE_DAYS} days.")

    if free:
        days = await availability.get_free_ranges(session, trainer, start, end)
    else:
        days = await availability.get_range_availability(session, trainer.id, start, end)
    return [_day(d, intervals) for d, intervals in days.items()]


@router.get("/templates", response_model=list[AvailabilityTemplateRead])
async def list_templates(
    trainer_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[AvailabilityTemplate]:
    await availability.require_reader(session, actor, trainer_id)
    return await availability.list_templates(session, trainer_id)


@router.post("/templates", response_model=AvailabilityTemplateRead, status_code=201)
async def create_template(
    trainer_id: int,
    body: AvailabilityTemplateCreate,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> AvailabilityTemplate:
    return await availability.create_template(
        session, actor, trainer_id, body.day_of_week, body.start_time, body.end_time
    )


@router.delete("/templates/{template_id}", status_code=204)
async def delete_template(
    trainer_id: int,
    template_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> None:
    await availability.delete_template(session, actor, trainer_id, template_id)


@router.get("/exceptions", response_model=list[AvailabilityExceptionRead])
async def list_exceptions(
    trainer_id: int,
    start: date | None = None,
    end: date | None = None,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[AvailabilityException]:
    await availability.require_reader(session, actor, trainer_id)
    return await availability.list_exceptions(session, trainer_id, start, end)


@router.post("/exceptions", response_model=AvailabilityExceptionRead, status_code=201)
async def create_exception(
    trainer_id: int,
    body: AvailabilityExceptionCreate,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> AvailabilityException:
    """Block a whole day, block part of a day, or open an extra slot."""
    return await availability.create_exception(
        session,
        actor,
        trainer_id,
        body.exception_date,
        body.exception_type,
        body.start_time,
        body.end_time,
        body.notes,
    )


@router.delete("/exceptions/{exception_id}", status_code=204)
async def delete_exception(
    trainer_id: int,
    exception_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> None:
    await availability.delete_exception(session, actor, trainer_id, exception_id)
