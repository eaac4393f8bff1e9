"""Booking orchestrator: validate, check, create, consume, with compensating rollback."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.conflicts import SlotCheck, check_slot
from mytrainer.booking.context import Actor
from mytrainer.booking.entitlements import (
    BookingMethod,
    EntitlementGrant,
    claim_credit,
    consume_pack_sessions,
    release_credit,
    restore_pack_sessions,
    validate_entitlement,
)
from mytrainer.booking.errors import (
    AuthorizationError,
    BookingError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from mytrainer.booking.guards import Compensations, bump_booking_version, read_booking_version
from mytrainer.booking.timeutils import to_naive_utc, utcnow
from mytrainer.config import get_settings
from mytrainer.models.client import Client
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import ServiceType, Trainer
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.notifications.messages import SESSION_BOOKED, build_session_notifications

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    trainer_id: int
    client_id: int
    service_type_id: int
    session_date: datetime
    booking_method: str
    pack_id: int | None = None
    subscription_id: int | None = None
    notes: str | None = None


@dataclass
class BookingOutcome:
    session: TrainingSession
    check: SlotCheck

    @property
    def warning(self) -> str | None:
        return self.check.message if self.check.is_warning else None

    @property
    def message(self) -> str:
        if self.session.status == "pending_approval":
            return "Session request submitted for trainer approval."
        return "Session booked successfully!"


async def load_booking_parties(
    session: AsyncSession,
    actor: Actor,
    trainer_id: int,
    client_id: int,
    service_type_id: int | None = None,
) -> tuple[Trainer, Client]:
    """Load trainer and client, checking ownership and the actor's permission."""
    if not actor.can_act_for(trainer_id, client_id):
        if actor.is_client:
            raise AuthorizationError("Clients can only book sessions for themselves.")
        raise AuthorizationError("A trainer can only book sessions for their own profile.")

    trainer = await session.get(Trainer, trainer_id)
    if trainer is None:
        raise NotFoundError("Trainer not found.")
    client = await session.get(Client, client_id)
    if client is None or client.trainer_id != trainer_id:
        raise NotFoundError("Client not found or is not assigned to the specified trainer.")

    if service_type_id is not None:
        result = await session.execute(
            select(ServiceType.id).where(
                ServiceType.id == service_type_id, ServiceType.trainer_id == trainer_id
            )
        )
        if result.first() is None:
            raise NotFoundError("Service type not found for this trainer.")
    return trainer, client


async def delete_session_row(session: AsyncSession, session_id: int) -> None:
    await session.execute(delete(TrainingSession).where(TrainingSession.id == session_id))


class BookingOrchestrator:
    """Runs a single booking end to end.

    Sequence: entitlement validation, conflict check, session insert, entitlement
    consumption, calendar guard, notification. Every step after the insert is
    undone by compensating actions if a later one fails.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._db = session
        self._notifier = notifier

    async def book(
        self, actor: Actor, request: BookingRequest, now: datetime | None = None
    ) -> BookingOutcome:
        now = to_naive_utc(now) if now is not None else utcnow()
        try:
            return await self._book(actor, request, now)
        except BookingError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Booking failed with a datastore error: %s", request)
            raise InternalError() from exc

    async def _book(self, actor: Actor, request: BookingRequest, now: datetime) -> BookingOutcome:
        start = to_naive_utc(request.session_date)
        if start <= now:
            raise ValidationError("Sessions cannot be booked in the past.")

        trainer, client = await load_booking_parties(
            self._db, actor, request.trainer_id, request.client_id, request.service_type_id
        )

        grant = await validate_entitlement(
            self._db,
            method=request.booking_method,
            trainer_id=trainer.id,
            client_id=client.id,
            service_type_id=request.service_type_id,
            pack_id=request.pack_id,
            subscription_id=request.subscription_id,
        )

        version = await read_booking_version(self._db, trainer.id)
        check = await check_slot(self._db, trainer, start, now=now)
        check.raise_for_conflict()

        new_session = await self._create(trainer, client, request, grant, start, version, now)
        logger.info(
            "Booked session %s: trainer=%s client=%s at=%s method=%s status=%s",
            new_session.id,
            trainer.id,
            client.id,
            start,
            grant.method,
            new_session.status,
        )

        if self._notifier is not None:
            self._notifier.fire_all(
                build_session_notifications(SESSION_BOOKED, new_session, trainer, client)
            )
        return BookingOutcome(new_session, check)

    async def _create(
        self,
        trainer: Trainer,
        client: Client,
        request: BookingRequest,
        grant: EntitlementGrant,
        start: datetime,
        version: int,
        now: datetime,
    ) -> TrainingSession:
        settings = get_settings()
        async with Compensations(self._db) as undo:
            new_session = TrainingSession(
                trainer_id=trainer.id,
                client_id=client.id,
                service_type_id=request.service_type_id,
                scheduled_at=start,
                duration_minutes=settings.session_duration_minutes,
                status=grant.session_status,
                session_pack_id=grant.pack_id,
                subscription_id=grant.subscription_id,
                credit_id_consumed=grant.credit_id,
                notes=request.notes,
            )
            self._db.add(new_session)
            await self._db.commit()
            undo.add(f"delete session {new_session.id}", delete_session_row, new_session.id)

            if grant.method is BookingMethod.PACK and grant.pack_id is not None:
                await consume_pack_sessions(self._db, grant.pack_id, trainer.id)
                await self._db.commit()
                undo.add(
                    f"restore pack {grant.pack_id}",
                    restore_pack_sessions,
                    grant.pack_id,
                    trainer.id,
                    1,
                    settings.pack_restore_attempts,
                )

            if grant.credit_id is not None:
                await claim_credit(self._db, grant.credit_id, now)
                await self._db.commit()
                undo.add(f"release credit {grant.credit_id}", release_credit, grant.credit_id)

            await bump_booking_version(self._db, trainer.id, version)
            await self._db.commit()
        return new_session
