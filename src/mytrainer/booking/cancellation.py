"""Cancellation/refund engine and rescheduling.

Late cancellations (at most `late_cancellation_hours` before start) are
penalised by default and keep their entitlement consumed. Only the trainer may
waive a late penalty. A non-penalised cancellation hands the entitlement back:
a pack slot, the credit the session used, or a freshly issued credit for a
subscription allocation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.conflicts import check_slot
from mytrainer.booking.context import Actor
from mytrainer.booking.entitlements import (
    claim_credit,
    consume_pack_sessions,
    issue_cancellation_credit,
    release_credit,
    restore_pack_sessions,
)
from mytrainer.booking.errors import (
    AuthorizationError,
    BookingError,
    ConcurrencyError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from mytrainer.booking.guards import Compensations, bump_booking_version, read_booking_version
from mytrainer.booking.timeutils import hours_until, to_naive_utc, utcnow
from mytrainer.config import get_settings
from mytrainer.models.client import Client
from mytrainer.models.entitlement import SessionCredit
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.notifications.messages import (
    SESSION_CANCELLED,
    SESSION_RESCHEDULED,
    build_session_notifications,
)

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = ("scheduled", "pending_approval")


@dataclass
class SessionContext:
    session: TrainingSession
    trainer: Trainer
    client: Client


async def load_session_for_actor(
    db: AsyncSession, session_id: int, actor: Actor
) -> SessionContext:
    """Load a session with its trainer and client; the actor must own one side."""
    training_session = await db.get(TrainingSession, session_id)
    if training_session is None:
        raise NotFoundError("Session not found or access denied")
    if not actor.can_act_for(training_session.trainer_id, training_session.client_id):
        raise AuthorizationError("You do not have permission to access this session")
    trainer = await db.get(Trainer, training_session.trainer_id)
    client = await db.get(Client, training_session.client_id)
    if trainer is None or client is None:
        raise NotFoundError("Session not found or access denied")
    return SessionContext(training_session, trainer, client)


async def _set_status(
    db: AsyncSession,
    session_id: int,
    expected: str,
    status: str,
    reason: str | None = None,
) -> None:
    """Guarded status transition; fails if the row moved on meanwhile."""
    updated = await db.execute(
        update(TrainingSession)
        .where(TrainingSession.id == session_id, TrainingSession.status == expected)
        .values(status=status, cancellation_reason=reason, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount == 0:
        raise ConcurrencyError("Session was modified by another request. Please retry.")


async def _delete_credit(db: AsyncSession, credit_id: int) -> None:
    await db.execute(delete(SessionCredit).where(SessionCredit.id == credit_id))


class CancellationEngine:
    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._db = session
        self._notifier = notifier

    async def cancel(
        self,
        actor: Actor,
        session_id: int,
        penalize: bool | None = None,
        now: datetime | None = None,
    ) -> TrainingSession:
        """Cancel a session, applying the late-cancellation penalty policy.

        Returns the updated session row.
        """
        now = to_naive_utc(now) if now is not None else utcnow()
        try:
            return await self._cancel(actor, session_id, penalize, now)
        except BookingError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Cancellation of session %s failed with a datastore error", session_id)
            raise InternalError() from exc

    async def _cancel(
        self, actor: Actor, session_id: int, penalize: bool | None, now: datetime
    ) -> TrainingSession:
        settings = get_settings()
        ctx = await load_session_for_actor(self._db, session_id, actor)
        row = ctx.session
        if row.status == "cancelled":
            raise ValidationError("Session is already cancelled.")
        if row.status not in CANCELLABLE_STATUSES:
            raise ValidationError(f"A {row.status} session cannot be cancelled.")

        is_late = hours_until(row.scheduled_at, now) <= settings.late_cancellation_hours
        if penalize is None:
            penalize = is_late
        elif is_late and not penalize and not actor.is_trainer:
            raise AuthorizationError(
                "Permission denied: Only trainers can waive penalties for late cancellations."
            )

        reason = "penalty" if penalize else "no-penalty"
        previous_status = row.status
        async with Compensations(self._db) as undo:
            await _set_status(self._db, row.id, previous_status, "cancelled", reason)
            await self._db.commit()
            undo.add(
                f"reopen session {row.id}",
                _set_status,
                row.id,
                "cancelled",
                previous_status,
                None,
            )
            if not penalize:
                await self._refund(row, undo, now)

        await self._db.refresh(row)
        logger.info(
            "Cancelled session %s by %s %s: late=%s reason=%s",
            row.id,
            actor.role,
            actor.id,
            is_late,
            reason,
        )
        if self._notifier is not None:
            self._notifier.fire_all(
                build_session_notifications(
                    SESSION_CANCELLED, row, ctx.trainer, ctx.client, penalized=penalize
                )
            )
        return row

    async def _refund(self, row: TrainingSession, undo: Compensations, now: datetime) -> None:
        """Reverse whatever entitlement the session consumed."""
        settings = get_settings()
        if row.session_pack_id is not None:
            await restore_pack_sessions(
                self._db,
                row.session_pack_id,
                row.trainer_id,
                1,
                settings.pack_restore_attempts,
            )
            await self._db.commit()
            undo.add(
                f"re-consume pack {row.session_pack_id}",
                consume_pack_sessions,
                row.session_pack_id,
                row.trainer_id,
                1,
            )
        elif row.subscription_id is not None:
            if row.credit_id_consumed is not None:
                await release_credit(self._db, row.credit_id_consumed)
                await self._db.commit()
                undo.add(
                    f"re-claim credit {row.credit_id_consumed}",
                    claim_credit,
                    row.credit_id_consumed,
                    now,
                )
                logger.info("Reverted consumed credit %s", row.credit_id_consumed)
            else:
                credit = await issue_cancellation_credit(
                    self._db, row.subscription_id, row.service_type_id
                )
                await self._db.commit()
                undo.add(f"delete credit {credit.id}", _delete_credit, credit.id)
                logger.info(
                    "Issued cancellation credit %s for subscription %s",
                    credit.id,
                    row.subscription_id,
                )

    async def reschedule(
        self,
        actor: Actor,
        session_id: int,
        new_date: datetime,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> TrainingSession:
        """Move a session to a new start instant, outside the 24-hour lock."""
        now = to_naive_utc(now) if now is not None else utcnow()
        try:
            return await self._reschedule(actor, session_id, to_naive_utc(new_date), notes, now)
        except BookingError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Reschedule of session %s failed with a datastore error", session_id)
            raise InternalError() from exc

    async def _reschedule(
        self,
        actor: Actor,
        session_id: int,
        new_start: datetime,
        notes: str | None,
        now: datetime,
    ) -> TrainingSession:
        settings = get_settings()
        ctx = await load_session_for_actor(self._db, session_id, actor)
        row = ctx.session
        if row.status not in CANCELLABLE_STATUSES:
            raise ValidationError(f"A {row.status} session cannot be edited.")
        if hours_until(row.scheduled_at, now) <= settings.late_cancellation_hours:
            logger.info("Edit rejected inside lock window: session=%s", row.id)
            raise ValidationError(
                f"Cannot edit session within {settings.late_cancellation_hours} hours "
                "of its start time"
            )
        if new_start <= now:
            raise ValidationError("Sessions cannot be moved into the past.")

        version = await read_booking_version(self._db, row.trainer_id)
        check = await check_slot(
            self._db, ctx.trainer, new_start, exclude_session_id=row.id, now=now
        )
        check.raise_for_conflict()

        previous = row.scheduled_at
        values: dict[str, object] = {"scheduled_at": new_start, "updated_at": utcnow()}
        if notes is not None:
            values["notes"] = notes

        async with Compensations(self._db) as undo:
            updated = await self._db.execute(
                update(TrainingSession)
                .where(TrainingSession.id == row.id, TrainingSession.scheduled_at == previous)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 0:
                raise ConcurrencyError("Session was modified by another request. Please retry.")
            await self._db.commit()
            undo.add(f"restore date of session {row.id}", _restore_date, row.id, previous)

            await bump_booking_version(self._db, row.trainer_id, version)
            await self._db.commit()

        await self._db.refresh(row)
        logger.info("Rescheduled session %s: %s → %s", row.id, previous, new_start)
        if self._notifier is not None:
            self._notifier.fire_all(
                build_session_notifications(
                    SESSION_RESCHEDULED, row, ctx.trainer, ctx.client, previous=previous
                )
            )
        return row


async def _restore_date(db: AsyncSession, session_id: int, previous: datetime) -> None:
    await db.execute(
        update(TrainingSession)
        .where(TrainingSession.id == session_id)
        .values(scheduled_at=previous, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
