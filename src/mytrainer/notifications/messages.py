"""Build notifications for session events, honouring each party's opt-in flag."""

import logging
from datetime import datetime
from typing import Any

from mytrainer.booking.timeutils import get_zone, utc_to_local
from mytrainer.models.client import Client
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer
from mytrainer.notifications.dispatcher import Notification

logger = logging.getLogger(__name__)

SESSION_BOOKED = "session_booked"
SESSION_CANCELLED = "session_cancelled"
SESSION_RESCHEDULED = "session_rescheduled"
RECURRING_CONFIRMED = "recurring_confirmed"
REMINDER_24H = "reminder_24h"
REMINDER_2H = "reminder_2h"


def readable(instant: datetime, trainer: Trainer) -> str:
    """Human-readable wall-clock time in the trainer's timezone."""
    local = utc_to_local(instant, get_zone(trainer.timezone))
    return local.strftime("%a %d %b %Y, %H:%M")


def _recipients(trainer: Trainer, client: Client) -> list[tuple[str, str]]:
    recipients = []
    if client.email and client.email_notifications_enabled:
        recipients.append(("client", client.email))
    elif client.email:
        logger.info("[email] skipped - recipient opted out (client %s)", client.id)
    if trainer.contact_email and trainer.email_notifications_enabled:
        recipients.append(("trainer", trainer.contact_email))
    elif trainer.contact_email:
        logger.info("[email] skipped - recipient opted out (trainer %s)", trainer.id)
    return recipients


def _compose(
    kind: str, session: TrainingSession, trainer: Trainer, **extra: Any
) -> tuple[str, dict[str, str]]:
    when = readable(session.scheduled_at, trainer)
    if kind == SESSION_BOOKED:
        if session.status == "pending_approval":
            subject = "Session request received"
            body = f"A session on {when} has been requested and is awaiting trainer approval."
        else:
            subject = "Session booked"
            body = f"A session has been booked for {when}."
        return subject, {"client": body, "trainer": body}
    if kind == SESSION_CANCELLED:
        body = f"Your session on {when} has been cancelled."
        body += " A penalty applies." if extra.get("penalized") else " No penalty will be charged."
        return "Session cancelled", {"client": body, "trainer": body}
    if kind == SESSION_RESCHEDULED:
        previous = readable(extra["previous"], trainer)
        body = f"Your session originally set for {previous} has been rescheduled to {when}."
        return "Session rescheduled", {"client": body, "trainer": body}
    if kind == RECURRING_CONFIRMED:
        body = f"{extra['count']} recurring sessions have been scheduled, starting {when}."
        return "Recurring sessions scheduled", {"client": body, "trainer": body}
    if kind in (REMINDER_24H, REMINDER_2H):
        span = "24 hours" if kind == REMINDER_24H else "2 hours"
        return f"Reminder: session in {span}", {
            "client": f"Hi! This is a friendly reminder that your session is scheduled for {when}.",
            "trainer": f"Heads up: you have a session scheduled for {when}.",
        }
    raise ValueError(f"Unknown notification type: {kind}")


def build_session_notifications(
    kind: str,
    session: TrainingSession,
    trainer: Trainer,
    client: Client,
    **extra: Any,
) -> list[Notification]:
    """Notifications for both parties of `session`, skipping opted-out recipients."""
    subject, bodies = _compose(kind, session, trainer, **extra)
    return [
        Notification(
            to=address,
            type=kind,
            data={"subject": subject, "body": bodies[role], "session_id": session.id},
        )
        for role, address in _recipients(trainer, client)
    ]
