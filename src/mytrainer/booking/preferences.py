"""Client time preferences: recurring weekly slots a client would like to train in."""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.context import Actor
from mytrainer.booking.errors import AuthorizationError, NotFoundError, ValidationError
from mytrainer.booking.timeutils import Weekday
from mytrainer.models.client import Client, ClientTimePreference

logger = logging.getLogger(__name__)

MAX_FLEX_MINUTES = 180


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _window(pref: ClientTimePreference) -> tuple[int, int]:
    start = _minutes(pref.start_time)
    end = _minutes(pref.end_time) if pref.end_time is not None else start
    return start, end


def preferences_overlap(a: ClientTimePreference, b: ClientTimePreference) -> bool:
    if a.weekday != b.weekday:
        return False
    a_start, a_end = _window(a)
    b_start, b_end = _window(b)
    # point preferences (no end time) only clash on an identical start
    return a_start == b_start or (a_start < b_end and b_start < a_end)


def find_overlap(
    candidate: ClientTimePreference, existing: Iterable[ClientTimePreference]
) -> ClientTimePreference | None:
    """Return the first active preference `candidate` clashes with, if any."""
    for pref in existing:
        if pref.id is not None and pref.id == candidate.id:
            continue
        if pref.is_active and preferences_overlap(candidate, pref):
            return pref
    return None


def find_matching_preference(
    preferences: Sequence[ClientTimePreference], local_dt: datetime
) -> ClientTimePreference | None:
    """Active preference on `local_dt`'s weekday whose start ± flex covers its time."""
    weekday = Weekday.from_date(local_dt.date())
    proposed = local_dt.hour * 60 + local_dt.minute
    for pref in preferences:
        if not pref.is_active or pref.weekday != weekday:
            continue
        start = _minutes(pref.start_time)
        if start - pref.flex_minutes <= proposed <= start + pref.flex_minutes:
            return pref
    return None


async def _load_client(db: AsyncSession, actor: Actor, client_id: int) -> Client:
    client = await db.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found.")
    if not actor.can_act_for(client.trainer_id, client.id):
        raise AuthorizationError("You do not have permission to manage this client's preferences.")
    return client


async def list_preferences(
    db: AsyncSession, actor: Actor, client_id: int, active_only: bool = True
) -> list[ClientTimePreference]:
    await _load_client(db, actor, client_id)
    stmt = select(ClientTimePreference).where(ClientTimePreference.client_id == client_id)
    if active_only:
        stmt = stmt.where(ClientTimePreference.is_active.is_(True))
    stmt = stmt.order_by(ClientTimePreference.weekday, ClientTimePreference.start_time)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_preference(
    db: AsyncSession,
    actor: Actor,
    client_id: int,
    *,
    weekday: int,
    start_time: time,
    end_time: time | None = None,
    flex_minutes: int = 0,
    notes: str | None = None,
    is_active: bool = True,
) -> ClientTimePreference:
    """Add a preference after checking its bounds and that it clashes with none."""
    await _load_client(db, actor, client_id)
    if end_time is not None and end_time <= start_time:
        raise ValidationError("End time must be after start time")
    if not 0 <= flex_minutes <= MAX_FLEX_MINUTES:
        raise ValidationError(f"Flex minutes must be between 0 and {MAX_FLEX_MINUTES}")

    pref = ClientTimePreference(
        client_id=client_id,
        weekday=int(Weekday(weekday)),
        start_time=start_time,
        end_time=end_time,
        flex_minutes=flex_minutes,
        notes=notes,
        is_active=is_active,
    )
    if is_active:
        existing = await list_preferences(db, actor, client_id)
        clash = find_overlap(pref, existing)
        if clash is not None:
            raise ValidationError(
                f"Preference overlaps an existing {Weekday(clash.weekday).name.title()} "
                f"preference at {clash.start_time:%H:%M}"
            )

    db.add(pref)
    await db.commit()
    await db.refresh(pref)
    logger.info("Created time preference %s for client %s", pref.id, client_id)
    return pref


async def delete_preference(
    db: AsyncSession, actor: Actor, client_id: int, preference_id: int
) -> None:
    await _load_client(db, actor, client_id)
    pref = await db.get(ClientTimePreference, preference_id)
    if pref is None or pref.client_id != client_id:
        raise NotFoundError("Preference not found.")
    await db.delete(pref)
    await db.commit()
    logger.info("Deleted time preference %s for client %s", preference_id, client_id)
