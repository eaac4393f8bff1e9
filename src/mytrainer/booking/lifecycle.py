"""Trainer-side session transitions: approve, complete, no-show."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.cancellation import load_session_for_actor
from mytrainer.booking.context import Actor
from mytrainer.booking.errors import AuthorizationError, InternalError, ValidationError
from mytrainer.booking.timeutils import utcnow
from mytrainer.models.session import TrainingSession

logger = logging.getLogger(__name__)

# target status -> statuses it may be reached from
TRANSITIONS: dict[str, tuple[str, ...]] = {
    "scheduled": ("pending_approval",),
    "completed": ("scheduled",),
    "no-show": ("scheduled",),
}


async def transition_session(
    db: AsyncSession,
    actor: Actor,
    session_id: int,
    status: str,
    notes: str | None = None,
) -> TrainingSession:
    ctx = await load_session_for_actor(db, session_id, actor)
    row = ctx.session
    if not actor.is_trainer:
        raise AuthorizationError("Only trainers can update session status.")
    allowed = TRANSITIONS[status]
    if row.status not in allowed:
        raise ValidationError(f"Cannot mark a {row.status} session as {status}.")

    row.status = status
    if notes is not None:
        row.notes = notes
    row.updated_at = utcnow()
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Status update of session %s failed", session_id)
        raise InternalError() from exc
    await db.refresh(row)
    logger.info("Session %s marked %s by trainer %s", row.id, status, actor.id)
    return row


async def approve_session(db: AsyncSession, actor: Actor, session_id: int) -> TrainingSession:
    """Confirm a one-off request: pending_approval -> scheduled."""
    return await transition_session(db, actor, session_id, "scheduled")


async def complete_session(
    db: AsyncSession, actor: Actor, session_id: int, notes: str | None = None
) -> TrainingSession:
    return await transition_session(db, actor, session_id, "completed", notes)


async def mark_no_show(
    db: AsyncSession, actor: Actor, session_id: int, notes: str | None = None
) -> TrainingSession:
    return await transition_session(db, actor, session_id, "no-show", notes)
