from datetime import date, datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mytrainer.database import Base


class RecurringSchedule(Base):
    __tablename__ = "recurring_schedules"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"))
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"))
    pattern_name: Mapped[str | None] = mapped_column(String(100), default=None)
    start_date: Mapped[date]
    end_date: Mapped[date]
    booking_method: Mapped[str] = mapped_column(String(20))  # one-off, pack, subscription
    session_pack_id: Mapped[int | None] = mapped_column(
        ForeignKey("session_packs.id"), default=None
    )
    subscription_id: Mapped[int | None] = mapped_column(
        ForeignKey("client_subscriptions.id"), default=None
    )
    service_type_id: Mapped[int] = mapped_column(ForeignKey("service_types.id"))
    status: Mapped[str] = mapped_column(String(20), default="active")
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True)
    total_sessions_generated: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)


class RecurringSchedulePreference(Base):
    __tablename__ = "recurring_schedule_preferences"
    __table_args__ = (UniqueConstraint("recurring_schedule_id", "preference_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    recurring_schedule_id: Mapped[int] = mapped_column(ForeignKey("recurring_schedules.id"))
    preference_id: Mapped[int] = mapped_column(ForeignKey("client_time_preferences.id"))
