from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from mytrainer.database import Base


class SessionPack(Base):
    __tablename__ = "session_packs"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"))
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"))
    service_type_id: Mapped[int] = mapped_column(ForeignKey("service_types.id"))
    total_sessions: Mapped[int]
    # Only mutated through the guarded compare-and-swap in booking.entitlements
    sessions_remaining: Mapped[int]
    status: Mapped[str] = mapped_column(
        String(20), default="active"
    )  # active, exhausted, cancelled, expired
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)


class Subscription(Base):
    __tablename__ = "client_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"))
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"))
    status: Mapped[str] = mapped_column(
        String(20), default="active"
    )  # active, paused, ended, cancelled
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)


class ServiceAllocation(Base):
    __tablename__ = "subscription_service_allocations"

    id: Mapped[int] = mapped_column(primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("client_subscriptions.id"))
    service_type_id: Mapped[int] = mapped_column(ForeignKey("service_types.id"))
    quantity_per_period: Mapped[int]
    period_type: Mapped[str] = mapped_column(String(10), default="weekly")  # weekly, monthly
    cost_per_session: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))


class SessionCredit(Base):
    __tablename__ = "subscription_session_credits"

    id: Mapped[int] = mapped_column(primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("client_subscriptions.id"))
    service_type_id: Mapped[int] = mapped_column(ForeignKey("service_types.id"))
    credit_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    credit_reason: Mapped[str | None] = mapped_column(String(30), default=None)
    status: Mapped[str] = mapped_column(
        String(20), default="available"
    )  # available, used_for_session, applied_to_payment, expired, forfeited, refunded
    used_at: Mapped[datetime | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
