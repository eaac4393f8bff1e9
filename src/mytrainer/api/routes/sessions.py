"""Session API routes: book, cancel, reschedule and manage single sessions."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import get_actor, get_dispatcher, get_now
from mytrainer.booking.cancellation import CancellationEngine, load_session_for_actor
from mytrainer.booking.context import Actor
from mytrainer.booking.lifecycle import approve_session, complete_session, mark_no_show
from mytrainer.booking.orchestrator import BookingOrchestrator, BookingRequest
from mytrainer.database import get_db
from mytrainer.models.session import TrainingSession
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.schemas.session import (
    BookSessionRequest,
    BookSessionResponse,
    CancelSessionRequest,
    EditSessionRequest,
    SessionActionResponse,
    SessionNotesRequest,
    SessionRead,
)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.post("/book", response_model=BookSessionResponse, status_code=201)
async def book_session(
    body: BookSessionRequest,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    now: datetime = Depends(get_now),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BookSessionResponse:
    """Book a single session.

    One-off bookings are created `pending_approval`; pack and subscription
    bookings are `scheduled` straight away. A start within 24 hours succeeds
    with a `warning`.
    """
    request = BookingRequest(
        trainer_id=body.trainer_id,
        client_id=body.client_id,
        service_type_id=body.service_type_id,
        session_date=body.session_date,
        booking_method=body.booking_method,
        pack_id=body.source_pack_id,
        subscription_id=body.source_subscription_id,
        notes=body.notes,
    )
    outcome = await BookingOrchestrator(session, dispatcher).book(actor, request, now)
    return BookSessionResponse(
        session_id=outcome.session.id,
        status=outcome.session.status,
        message=outcome.message,
        warning=outcome.warning,
    )


@router.get("/{session_id}", response_model=SessionRead)
async def get_session(
    session_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TrainingSession:
    ctx = await load_session_for_actor(session, session_id, actor)
    return ctx.session


@router.post("/{session_id}/cancel", response_model=SessionActionResponse)
async def cancel_session(
    session_id: int,
    body: CancelSessionRequest | None = None,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    now: datetime = Depends(get_now),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SessionActionResponse:
    penalize = body.penalize if body is not None else None
    cancelled = await CancellationEngine(session, dispatcher).cancel(
        actor, session_id, penalize, now
    )
    if cancelled.cancellation_reason == "penalty":
        message = "Session cancelled. A late-cancellation penalty applies."
    else:
        message = "Session cancelled without penalty."
    return SessionActionResponse(message=message, session=SessionRead.model_validate(cancelled))


@router.patch("/{session_id}", response_model=SessionActionResponse)
async def edit_session(
    session_id: int,
    body: EditSessionRequest,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    now: datetime = Depends(get_now),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SessionActionResponse:
    """Move a session to a new time. Locked within 24 hours of its start."""
    updated = await CancellationEngine(session, dispatcher).reschedule(
        actor, session_id, body.session_date, body.notes, now
    )
    return SessionActionResponse(
        message="Session updated successfully.", session=SessionRead.model_validate(updated)
    )


@router.post("/{session_id}/approve", response_model=SessionActionResponse)
async def approve(
    session_id: int,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionActionResponse:
    approved = await approve_session(session, actor, session_id)
    return SessionActionResponse(
        message="Session approved.", session=SessionRead.model_validate(approved)
    )


@router.post("/{session_id}/complete", response_model=SessionActionResponse)
async def complete(
    session_id: int,
    body: SessionNotesRequest | None = None,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionActionResponse:
    notes = body.notes if body is not None else None
    completed = await complete_session(session, actor, session_id, notes)
    return SessionActionResponse(
        message="Session marked as completed.", session=SessionRead.model_validate(completed)
    )


@router.post("/{session_id}/no-show", response_model=SessionActionResponse)
async def no_show(
    session_id: int,
    body: SessionNotesRequest | None = None,
    session: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> SessionActionResponse:
    notes = body.notes if body is not None else None
    missed = await mark_no_show(session, actor, session_id, notes)
    return SessionActionResponse(
        message="Session marked as no-show.", session=SessionRead.model_validate(missed)
    )
