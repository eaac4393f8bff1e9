"""Entitlement validation and consumption for packs, subscriptions and credits.

Validation is read-only and derives pack capacity from live session counts.
Consumption mutates shared state and only ever does so through guarded
single-row updates: the pack counter with a compare-and-swap on the value just
read, a credit with a compare-and-swap on its status.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.context import Actor
from mytrainer.booking.errors import (
    ConcurrencyError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from mytrainer.booking.timeutils import utcnow
from mytrainer.models.entitlement import (
    ServiceAllocation,
    SessionCredit,
    SessionPack,
    Subscription,
)
from mytrainer.models.session import TrainingSession

logger = logging.getLogger(__name__)

# Sessions that use up a pack slot; penalised cancellations count as consumed.
CONSUMING_STATUSES = ("scheduled", "completed", "no-show")


class BookingMethod(StrEnum):
    ONE_OFF = "one-off"
    PACK = "pack"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class EntitlementGrant:
    """Result of a successful validation, attached to the new session(s)."""

    method: BookingMethod
    session_status: str
    pack_id: int | None = None
    subscription_id: int | None = None
    credit_id: int | None = None


async def count_pack_consumption(session: AsyncSession, pack_id: int) -> int:
    """Count sessions currently consuming the pack."""
    stmt = select(func.count(TrainingSession.id)).where(
        TrainingSession.session_pack_id == pack_id,
        or_(
            TrainingSession.status.in_(CONSUMING_STATUSES),
            (TrainingSession.status == "cancelled")
            & (TrainingSession.cancellation_reason == "penalty"),
        ),
    )
    result = await session.execute(stmt)
    return result.scalar_one()


async def _validate_pack(
    session: AsyncSession,
    *,
    trainer_id: int,
    client_id: int,
    service_type_id: int,
    pack_id: int | None,
    quantity: int,
) -> EntitlementGrant:
    if pack_id is None:
        raise ValidationError("Session pack ID is required for pack bookings.")

    result = await session.execute(
        select(SessionPack).where(
            SessionPack.id == pack_id,
            SessionPack.client_id == client_id,
            SessionPack.trainer_id == trainer_id,
        )
    )
    pack = result.scalar_one_or_none()
    if pack is None:
        raise EntitlementError("Session pack not found.", code="entitlement_not_found")
    if pack.status != "active":
        raise EntitlementError("Session pack is not active.", code="entitlement_inactive")
    if pack.service_type_id != service_type_id:
        raise EntitlementError(
            "Service type does not match the selected pack.", code="service_type_mismatch"
        )

    consumed = await count_pack_consumption(session, pack.id)
    if consumed + quantity > pack.total_sessions:
        available = max(pack.total_sessions - consumed, 0)
        message = (
            "No sessions remaining in this pack."
            if available == 0
            else f"Pack has {available} session(s) available, {quantity} needed."
        )
        raise EntitlementError(message, code="entitlement_exhausted")

    return EntitlementGrant(BookingMethod.PACK, "scheduled", pack_id=pack.id)


async def _validate_subscription(
    session: AsyncSession,
    *,
    trainer_id: int,
    client_id: int,
    service_type_id: int,
    subscription_id: int | None,
    use_credit: bool,
) -> EntitlementGrant:
    if subscription_id is None:
        raise ValidationError("Subscription ID is required for subscription bookings.")

    result = await session.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.client_id == client_id,
            Subscription.trainer_id == trainer_id,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise EntitlementError("Subscription not found.", code="entitlement_not_found")
    if subscription.status != "active":
        raise EntitlementError("Subscription is not active.", code="entitlement_inactive")

    alloc_result = await session.execute(
        select(ServiceAllocation.id).where(
            ServiceAllocation.subscription_id == subscription.id,
            ServiceAllocation.service_type_id == service_type_id,
        )
    )
    if alloc_result.first() is None:
        raise EntitlementError(
            "Subscription does not include this service type.", code="service_type_mismatch"
        )

    credit_id = None
    if use_credit:
        credit_result = await session.execute(
            select(SessionCredit.id)
            .where(
                SessionCredit.subscription_id == subscription.id,
                SessionCredit.service_type_id == service_type_id,
                SessionCredit.status == "available",
            )
            .order_by(SessionCredit.created_at, SessionCredit.id)
            .limit(1)
        )
        credit_id = credit_result.scalar_one_or_none()

    return EntitlementGrant(
        BookingMethod.SUBSCRIPTION,
        "scheduled",
        subscription_id=subscription.id,
        credit_id=credit_id,
    )


async def validate_entitlement(
    session: AsyncSession,
    *,
    method: BookingMethod | str,
    trainer_id: int,
    client_id: int,
    service_type_id: int,
    pack_id: int | None = None,
    subscription_id: int | None = None,
    quantity: int = 1,
    use_credit: bool = True,
) -> EntitlementGrant:
    """Check the client holds a usable entitlement for `quantity` sessions.

    One-off bookings always pass and start as `pending_approval`. Subscription
    bookings prefer an available credit of the same service type over a fresh
    allocation slot (`use_credit`). Raises EntitlementError/ValidationError.
    """
    try:
        method = BookingMethod(method)
    except ValueError:
        raise ValidationError(f"Invalid booking method: {method}") from None

    if method is BookingMethod.ONE_OFF:
        return EntitlementGrant(BookingMethod.ONE_OFF, "pending_approval")
    if method is BookingMethod.PACK:
        return await _validate_pack(
            session,
            trainer_id=trainer_id,
            client_id=client_id,
            service_type_id=service_type_id,
            pack_id=pack_id,
            quantity=quantity,
        )
    return await _validate_subscription(
        session,
        trainer_id=trainer_id,
        client_id=client_id,
        service_type_id=service_type_id,
        subscription_id=subscription_id,
        use_credit=use_credit,
    )


async def consume_pack_sessions(
    session: AsyncSession, pack_id: int, trainer_id: int, count: int = 1
) -> int:
    """Guarded decrement of `sessions_remaining` by `count`.

    Reads the counter, then updates it only if it still holds the value read.
    Never takes the counter below zero. Returns the new remaining count.
    Does not commit.
    """
    result = await session.execute(
        select(SessionPack.sessions_remaining).where(
            SessionPack.id == pack_id, SessionPack.trainer_id == trainer_id
        )
    )
    seen = result.scalar_one_or_none()
    if seen is None:
        raise EntitlementError("Session pack not found.", code="entitlement_not_found")
    if seen < count:
        raise EntitlementError("No sessions remaining in this pack.", code="entitlement_exhausted")

    remaining = seen - count
    values: dict[str, object] = {"sessions_remaining": remaining, "updated_at": utcnow()}
    if remaining == 0:
        values["status"] = "exhausted"
    updated = await session.execute(
        update(SessionPack)
        .where(
            SessionPack.id == pack_id,
            SessionPack.trainer_id == trainer_id,
            SessionPack.sessions_remaining == seen,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount == 0:
        logger.warning("Lost pack decrement race: pack=%s seen=%s", pack_id, seen)
        raise ConcurrencyError(
            "Session pack was updated by another booking. Please retry."
        )
    logger.info("Pack %s decremented by %d (%d → %d)", pack_id, count, seen, remaining)
    return remaining


async def restore_pack_sessions(
    session: AsyncSession,
    pack_id: int,
    trainer_id: int,
    count: int = 1,
    attempts: int = 3,
) -> int:
    """Guarded increment of `sessions_remaining`, retried on lost races.

    Re-activates an exhausted pack. Returns the new remaining count. Does not commit.
    """
    for attempt in range(1, attempts + 1):
        result = await session.execute(
            select(SessionPack.sessions_remaining, SessionPack.status).where(
                SessionPack.id == pack_id, SessionPack.trainer_id == trainer_id
            )
        )
        row = result.first()
        if row is None:
            raise EntitlementError("Session pack not found.", code="entitlement_not_found")
        seen, status = row

        values: dict[str, object] = {"sessions_remaining": seen + count, "updated_at": utcnow()}
        if status == "exhausted":
            values["status"] = "active"
        updated = await session.execute(
            update(SessionPack)
            .where(
                SessionPack.id == pack_id,
                SessionPack.trainer_id == trainer_id,
                SessionPack.sessions_remaining == seen,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 1:
            logger.info("Pack %s restored by %d (%d → %d)", pack_id, count, seen, seen + count)
            return seen + count
        logger.warning("Pack restore race on pack %s (attempt %d/%d)", pack_id, attempt, attempts)

    raise ConcurrencyError("Session pack is busy. Please retry the cancellation.")


async def claim_credit(session: AsyncSession, credit_id: int, now: datetime | None = None) -> None:
    """Mark an available credit as used. Does not commit."""
    updated = await session.execute(
        update(SessionCredit)
        .where(SessionCredit.id == credit_id, SessionCredit.status == "available")
        .values(status="used_for_session", used_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount == 0:
        logger.warning("Credit %s was claimed concurrently", credit_id)
        raise ConcurrencyError("Session credit was used by another booking. Please retry.")


async def release_credit(session: AsyncSession, credit_id: int) -> None:
    """Return a used credit to the available pool. Does not commit."""
    await session.execute(
        update(SessionCredit)
        .where(SessionCredit.id == credit_id)
        .values(status="available", used_at=None)
        .execution_options(synchronize_session=False)
    )


async def issue_cancellation_credit(
    session: AsyncSession, subscription_id: int, service_type_id: int
) -> SessionCredit:
    """Bank a credit worth the allocation's per-session cost. Does not commit."""
    result = await session.execute(
        select(ServiceAllocation.cost_per_session).where(
            ServiceAllocation.subscription_id == subscription_id,
            ServiceAllocation.service_type_id == service_type_id,
        )
    )
    cost = result.scalars().first()
    credit = SessionCredit(
        subscription_id=subscription_id,
        service_type_id=service_type_id,
        credit_value=cost if cost is not None else Decimal("0"),
        credit_reason="cancellation",
        status="available",
    )
    session.add(credit)
    await session.flush()
    return credit


@dataclass(frozen=True)
class PackStats:
    pack_id: int
    total: int
    consumed: int
    available: int
    cached_remaining: int
    status: str


async def get_pack_stats(session: AsyncSession, actor: Actor, pack_id: int) -> PackStats:
    """Live usage for a pack next to its cached counter."""
    pack = await session.get(SessionPack, pack_id)
    if pack is None or not actor.can_act_for(pack.trainer_id, pack.client_id):
        raise NotFoundError("Session pack not found.")
    consumed = await count_pack_consumption(session, pack.id)
    if consumed != pack.total_sessions - pack.sessions_remaining:
        logger.warning(
            "Pack %s counter drift: consumed=%d remaining=%d total=%d",
            pack.id,
            consumed,
            pack.sessions_remaining,
            pack.total_sessions,
        )
    return PackStats(
        pack_id=pack.id,
        total=pack.total_sessions,
        consumed=consumed,
        available=max(pack.total_sessions - consumed, 0),
        cached_remaining=pack.sessions_remaining,
        status=pack.status,
    )
