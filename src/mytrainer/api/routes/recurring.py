"""Recurring schedule API: preview or confirm a batch of weekly sessions."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import get_actor, get_dispatcher, get_now
from mytrainer.booking.context import Actor
from mytrainer.booking.recurring import RecurringRequest, RecurringScheduleGenerator
from mytrainer.database import get_db
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.schemas.recurring import (
    PreviewStats,
    ProposedSessionRead,
    RecurringConfirmResponse,
    RecurringPreviewResponse,
    RecurringScheduleRequest,
)

router = APIRouter(prefix="/api/recurring", tags=["recurring"])


def _to_request(body: RecurringScheduleRequest) -> RecurringRequest:
    return RecurringRequest(
        trainer_id=body.trainer_id,
        client_id=body.client_id,
        preference_ids=body.preference_ids,
        start_date=body.start_date,
        end_date=body.end_date,
        booking_method=body.booking_method,
        service_type_id=body.service_type_id,
        pack_id=body.session_pack_id,
        subscription_id=body.subscription_id,
        pattern_name=body.pattern_name,
        excluded=[(e.day, e.start) for e in body.excluded_sessions],
    )


@router.post("", response_model=RecurringPreviewResponse | RecurringConfirmResponse)
async def generate_recurring(
    body: RecurringScheduleRequest,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    now: datetime = Depends(get_now),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RecurringPreviewResponse | RecurringConfirmResponse:
    """Preview proposed sessions with conflict annotations, or confirm them.

    Confirming the same request twice is a no-op the second time: the
    existing schedule id comes back with `sessionsCreated = 0`.
    """
    generator = RecurringScheduleGenerator(session, dispatcher)
    request = _to_request(body)

    if body.action == "preview":
        preview = await generator.preview(actor, request, now)
        return RecurringPreviewResponse(
            sessions=[
                ProposedSessionRead(
                    day=p.date,
                    start=p.time.strftime("%H:%M"),
                    weekday=int(p.weekday),
                    preference_id=p.preference_id,
                    utc=p.utc,
                    status=str(p.status),
                    message=p.message,
                )
                for p in preview.sessions
            ],
            stats=PreviewStats(
                total_proposed=len(preview.sessions),
                conflicts=preview.conflicts,
                warnings=preview.warnings,
            ),
        )

    confirmation = await generator.confirm(actor, request, now)
    return RecurringConfirmResponse(
        recurring_schedule_id=confirmation.schedule_id,
        sessions_created=confirmation.sessions_created,
        message=confirmation.message,
    )
