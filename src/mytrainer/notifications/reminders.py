"""Periodic 24-hour and 2-hour session reminders.

Meant to be triggered every few minutes. Each (session, reminder type) pair is
recorded in `session_notifications` before sending; the unique constraint on
that pair makes overlapping runs skip reminders that were already sent. When
every delivery for a reminder fails the record is removed again, so the next
run inside the window retries it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.timeutils import to_naive_utc, utcnow
from mytrainer.config import get_settings
from mytrainer.models.client import Client
from mytrainer.models.notification import SessionNotification
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.notifications.messages import (
    REMINDER_2H,
    REMINDER_24H,
    build_session_notifications,
)

logger = logging.getLogger(__name__)

SCAN_HORIZON = timedelta(hours=26)
REMINDER_MARKS = {REMINDER_24H: 24 * 60, REMINDER_2H: 2 * 60}


@dataclass
class ReminderRun:
    scanned: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0


def reminder_due(start: datetime, now: datetime, window_minutes: int) -> str | None:
    """Reminder type whose mark `start` falls on (± window), if any."""
    minutes_left = round((start - now) / timedelta(minutes=1))
    for kind, mark in REMINDER_MARKS.items():
        if abs(minutes_left - mark) <= window_minutes:
            return kind
    return None


async def _record(db: AsyncSession, session_id: int, kind: str, now: datetime) -> bool:
    """Insert the delivery record. False if this reminder was already sent."""
    db.add(SessionNotification(session_id=session_id, notification_type=kind, sent_at=now))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("[reminders] duplicate skip session=%s type=%s", session_id, kind)
        return False
    return True


async def _forget(db: AsyncSession, session_id: int, kind: str) -> None:
    await db.execute(
        delete(SessionNotification).where(
            SessionNotification.session_id == session_id,
            SessionNotification.notification_type == kind,
        )
    )
    await db.commit()


async def send_session_reminders(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
) -> ReminderRun:
    settings = get_settings()
    run = ReminderRun()
    if not dispatcher.enabled:
        logger.info("[reminders] skipped, email notifications disabled")
        return run

    now = to_naive_utc(now) if now is not None else utcnow()
    stmt = (
        select(TrainingSession, Trainer, Client)
        .join(Trainer, Trainer.id == TrainingSession.trainer_id)
        .join(Client, Client.id == TrainingSession.client_id)
        .where(
            TrainingSession.status == "scheduled",
            TrainingSession.scheduled_at >= now,
            TrainingSession.scheduled_at <= now + SCAN_HORIZON,
        )
        .order_by(TrainingSession.scheduled_at)
    )
    rows = (await db.execute(stmt)).all()
    run.scanned = len(rows)
    # detached rows keep their loaded state across the duplicate-skip rollbacks
    db.expunge_all()

    for training_session, trainer, client in rows:
        kind = reminder_due(training_session.scheduled_at, now, settings.reminder_window_minutes)
        if kind is None:
            continue
        if not await _record(db, training_session.id, kind, now):
            run.skipped += 1
            continue
        notifications = build_session_notifications(kind, training_session, trainer, client)
        results = [await dispatcher.send(n) for n in notifications]
        if notifications and not any(results):
            await _forget(db, training_session.id, kind)
            run.failed += 1
            logger.warning(
                "[reminders] delivery failed session=%s type=%s, will retry",
                training_session.id,
                kind,
            )
            continue
        run.sent += 1
        logger.info("[reminders] sent session=%s type=%s", training_session.id, kind)

    return run
