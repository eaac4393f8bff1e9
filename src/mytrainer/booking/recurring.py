"""Recurring schedule generator: expand weekly client preferences into sessions.

Two phases share the same expansion:

* preview: propose every instant in the range, annotate each with the
  conflict checker, persist nothing.
* confirm: derive a deterministic idempotency key; a replayed request returns
  the existing schedule untouched. Otherwise create the schedule, its
  preference links and every non-conflicting session, then consume the
  entitlement for the whole batch in one guarded decrement. Any failure
  undoes the work in reverse order.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.conflicts import SlotCheck, SlotStatus, check_slot
from mytrainer.booking.context import Actor
from mytrainer.booking.entitlements import (
    BookingMethod,
    EntitlementGrant,
    consume_pack_sessions,
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
from mytrainer.booking.orchestrator import load_booking_parties
from mytrainer.booking.timeutils import Weekday, get_zone, local_to_utc, to_naive_utc, utcnow
from mytrainer.config import get_settings
from mytrainer.models.client import Client, ClientTimePreference
from mytrainer.models.schedule import RecurringSchedule, RecurringSchedulePreference
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import Trainer
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.notifications.messages import RECURRING_CONFIRMED, build_session_notifications

logger = logging.getLogger(__name__)

MSG_BATCH_OVERLAP = "Overlaps another session in this schedule"


@dataclass
class RecurringRequest:
    trainer_id: int
    client_id: int
    preference_ids: list[int]
    start_date: date
    end_date: date
    booking_method: str
    service_type_id: int
    pack_id: int | None = None
    subscription_id: int | None = None
    pattern_name: str | None = None
    excluded: list[tuple[date, time]] = field(default_factory=list)


@dataclass
class ProposedSession:
    date: date
    time: time
    weekday: Weekday
    preference_id: int
    utc: datetime
    status: SlotStatus = SlotStatus.OK
    message: str | None = None


@dataclass
class RecurringPreview:
    sessions: list[ProposedSession]

    @property
    def conflicts(self) -> int:
        return sum(1 for p in self.sessions if p.status is SlotStatus.CONFLICT)

    @property
    def warnings(self) -> int:
        return sum(1 for p in self.sessions if p.status is SlotStatus.WARNING)


@dataclass
class RecurringConfirmation:
    schedule_id: int
    sessions_created: int
    replayed: bool = False

    @property
    def message(self) -> str:
        if self.replayed:
            return "Idempotent: already created"
        return f"Created {self.sessions_created} recurring sessions"


def idempotency_key(request: RecurringRequest) -> str:
    """Deterministic key over every field that defines the batch."""
    raw = "|".join(
        [
            str(request.trainer_id),
            str(request.client_id),
            ",".join(str(p) for p in sorted(set(request.preference_ids))),
            request.start_date.isoformat(),
            request.end_date.isoformat(),
            str(request.booking_method),
            str(request.pack_id or ""),
            str(request.subscription_id or ""),
            str(request.service_type_id),
        ]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def expand_preferences(
    preferences: list[ClientTimePreference],
    start_date: date,
    end_date: date,
    timezone: str,
    excluded: list[tuple[date, time]] | None = None,
) -> list[ProposedSession]:
    """Every (date, preference start) in [start_date, end_date], sorted by instant.

    Wall-clock times are converted with the zone rules of each date, so a
    series crossing a DST boundary keeps its local time.
    """
    tz = get_zone(timezone)
    skip = {(d, t.replace(second=0, microsecond=0)) for d, t in excluded or []}
    proposed: list[ProposedSession] = []
    for pref in preferences:
        weekday = Weekday.parse(pref.weekday)
        wall = pref.start_time.replace(second=0, microsecond=0)
        current = start_date + timedelta(days=(weekday - Weekday.from_date(start_date)) % 7)
        while current <= end_date:
            if (current, wall) not in skip:
                proposed.append(
                    ProposedSession(
                        date=current,
                        time=wall,
                        weekday=weekday,
                        preference_id=pref.id,
                        utc=local_to_utc(current, wall, tz),
                    )
                )
            current += timedelta(days=7)
    proposed.sort(key=lambda p: p.utc)
    return proposed


class RecurringScheduleGenerator:
    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._db = session
        self._notifier = notifier

    async def preview(
        self, actor: Actor, request: RecurringRequest, now: datetime | None = None
    ) -> RecurringPreview:
        now = to_naive_utc(now) if now is not None else utcnow()
        try:
            trainer, _client, proposed = await self._prepare(actor, request)
            await self._annotate(trainer, proposed, now)
        except BookingError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Recurring preview failed with a datastore error")
            raise InternalError() from exc
        return RecurringPreview(proposed)

    async def confirm(
        self, actor: Actor, request: RecurringRequest, now: datetime | None = None
    ) -> RecurringConfirmation:
        now = to_naive_utc(now) if now is not None else utcnow()
        try:
            return await self._confirm(actor, request, now)
        except BookingError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Recurring confirm failed with a datastore error")
            raise InternalError() from exc

    async def _prepare(
        self, actor: Actor, request: RecurringRequest
    ) -> tuple[Trainer, Client, list[ProposedSession]]:
        settings = get_settings()
        if not settings.recurring_sessions_enabled:
            raise NotFoundError("Feature not available")
        if not actor.is_trainer:
            raise AuthorizationError("Only trainers can generate recurring schedules.")

        preference_ids = sorted(set(request.preference_ids))
        if not 1 <= len(preference_ids) <= settings.max_preferences_per_schedule:
            raise ValidationError(
                f"Select between 1 and {settings.max_preferences_per_schedule} preferences."
            )
        if request.end_date <= request.start_date:
            raise ValidationError("endDate must be after startDate")

        trainer, client = await load_booking_parties(
            self._db, actor, request.trainer_id, request.client_id, request.service_type_id
        )

        result = await self._db.execute(
            select(ClientTimePreference).where(
                ClientTimePreference.client_id == client.id,
                ClientTimePreference.is_active.is_(True),
                ClientTimePreference.id.in_(preference_ids),
            )
        )
        preferences = list(result.scalars().all())
        if not preferences:
            raise ValidationError("No active preferences")
        missing = set(preference_ids) - {p.id for p in preferences}
        if missing:
            raise ValidationError(f"Preferences not found or inactive: {sorted(missing)}")

        proposed = expand_preferences(
            preferences, request.start_date, request.end_date, trainer.timezone, request.excluded
        )
        if len(proposed) > settings.max_sessions_per_schedule:
            raise ValidationError(
                f"Too many sessions ({len(proposed)}). Max {settings.max_sessions_per_schedule}"
            )
        return trainer, client, proposed

    async def _annotate(
        self, trainer: Trainer, proposed: list[ProposedSession], now: datetime
    ) -> None:
        """Run the conflict checker per item and flag overlaps inside the batch."""
        duration = timedelta(minutes=get_settings().session_duration_minutes)
        accepted: list[datetime] = []
        for item in proposed:
            if item.utc <= now:
                item.status, item.message = SlotStatus.CONFLICT, "Time is in the past"
                continue
            check: SlotCheck = await check_slot(self._db, trainer, item.utc, now=now)
            if not check.is_conflict and any(abs(item.utc - other) < duration for other in accepted):
                check = SlotCheck(SlotStatus.CONFLICT, MSG_BATCH_OVERLAP)
            item.status, item.message = check.status, check.message
            if not check.is_conflict:
                accepted.append(item.utc)

    async def _find_schedule(self, key: str) -> int | None:
        result = await self._db.execute(
            select(RecurringSchedule.id).where(RecurringSchedule.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def _confirm(
        self, actor: Actor, request: RecurringRequest, now: datetime
    ) -> RecurringConfirmation:
        trainer, client, proposed = await self._prepare(actor, request)

        key = idempotency_key(request)
        existing_id = await self._find_schedule(key)
        if existing_id is not None:
            logger.info("Recurring confirm replayed: schedule=%s key=%s", existing_id, key[:12])
            return RecurringConfirmation(existing_id, 0, replayed=True)

        try:
            return await self._create(trainer, client, request, proposed, key, now)
        except BookingError:
            # a concurrent confirm with the same key may have taken the slots first
            winner = await self._find_schedule(key)
            if winner is None:
                raise
            logger.info("Recurring confirm lost idempotency race to schedule %s", winner)
            return RecurringConfirmation(winner, 0, replayed=True)

    async def _create(
        self,
        trainer: Trainer,
        client: Client,
        request: RecurringRequest,
        proposed: list[ProposedSession],
        key: str,
        now: datetime,
    ) -> RecurringConfirmation:
        version = await read_booking_version(self._db, trainer.id)
        await self._annotate(trainer, proposed, now)
        bookable = [p for p in proposed if p.status is not SlotStatus.CONFLICT]
        if not bookable:
            raise ValidationError("No sessions could be scheduled: every proposed time conflicts.")

        grant = await validate_entitlement(
            self._db,
            method=request.booking_method,
            trainer_id=trainer.id,
            client_id=client.id,
            service_type_id=request.service_type_id,
            pack_id=request.pack_id,
            subscription_id=request.subscription_id,
            quantity=len(bookable),
            use_credit=False,
        )

        schedule = RecurringSchedule(
            trainer_id=trainer.id,
            client_id=client.id,
            pattern_name=request.pattern_name,
            start_date=request.start_date,
            end_date=request.end_date,
            booking_method=str(grant.method),
            session_pack_id=grant.pack_id,
            subscription_id=grant.subscription_id,
            service_type_id=request.service_type_id,
            idempotency_key=key,
            total_sessions_generated=len(bookable),
        )
        self._db.add(schedule)
        try:
            await self._db.commit()
        except IntegrityError:
            # A concurrent confirm with the same key won the insert
            await self._db.rollback()
            winner = await self._find_schedule(key)
            if winner is None:
                raise
            logger.info("Recurring confirm lost idempotency race to schedule %s", winner)
            return RecurringConfirmation(winner, 0, replayed=True)

        sessions = await self._populate(trainer, client, schedule, request, grant, bookable, version)
        logger.info(
            "[RECURRING] confirmed schedule=%s sessions=%d trainer=%s client=%s method=%s",
            schedule.id,
            len(sessions),
            trainer.id,
            client.id,
            grant.method,
        )
        if self._notifier is not None and sessions:
            self._notifier.fire_all(
                build_session_notifications(
                    RECURRING_CONFIRMED, sessions[0], trainer, client, count=len(sessions)
                )
            )
        return RecurringConfirmation(schedule.id, len(sessions))

    async def _populate(
        self,
        trainer: Trainer,
        client: Client,
        schedule: RecurringSchedule,
        request: RecurringRequest,
        grant: EntitlementGrant,
        bookable: list[ProposedSession],
        version: int,
    ) -> list[TrainingSession]:
        settings = get_settings()
        async with Compensations(self._db) as undo:
            undo.add(f"delete schedule {schedule.id}", _delete_schedule, schedule.id)

            self._db.add_all(
                RecurringSchedulePreference(recurring_schedule_id=schedule.id, preference_id=pid)
                for pid in sorted(set(request.preference_ids))
            )
            await self._db.commit()
            undo.add("delete preference links", _delete_preference_links, schedule.id)

            sessions = [
                TrainingSession(
                    trainer_id=trainer.id,
                    client_id=client.id,
                    service_type_id=request.service_type_id,
                    scheduled_at=item.utc,
                    duration_minutes=settings.session_duration_minutes,
                    status=grant.session_status,
                    session_pack_id=grant.pack_id,
                    subscription_id=grant.subscription_id,
                    recurring_schedule_id=schedule.id,
                    notes=f"Recurring schedule {schedule.id}",
                )
                for item in bookable
            ]
            self._db.add_all(sessions)
            await self._db.commit()
            undo.add("delete generated sessions", _delete_schedule_sessions, schedule.id)

            if grant.method is BookingMethod.PACK and grant.pack_id is not None:
                await consume_pack_sessions(self._db, grant.pack_id, trainer.id, len(sessions))
                await self._db.commit()
                undo.add(
                    f"restore pack {grant.pack_id}",
                    restore_pack_sessions,
                    grant.pack_id,
                    trainer.id,
                    len(sessions),
                    settings.pack_restore_attempts,
                )

            await bump_booking_version(self._db, trainer.id, version)
            await self._db.commit()
        return sessions


async def _delete_schedule(session: AsyncSession, schedule_id: int) -> None:
    await session.execute(delete(RecurringSchedule).where(RecurringSchedule.id == schedule_id))


async def _delete_preference_links(session: AsyncSession, schedule_id: int) -> None:
    await session.execute(
        delete(RecurringSchedulePreference).where(
            RecurringSchedulePreference.recurring_schedule_id == schedule_id
        )
    )


async def _delete_schedule_sessions(session: AsyncSession, schedule_id: int) -> None:
    await session.execute(
        delete(TrainingSession).where(TrainingSession.recurring_schedule_id == schedule_id)
    )
