from datetime import datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mytrainer.database import Base


class TrainingSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"), index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"))
    service_type_id: Mapped[int] = mapped_column(ForeignKey("service_types.id"))
    scheduled_at: Mapped[datetime] = mapped_column(index=True)  # naive UTC
    duration_minutes: Mapped[int] = mapped_column(default=60)
    status: Mapped[str] = mapped_column(
        String(20), default="scheduled"
    )  # scheduled, completed, cancelled, no-show, pending_approval
    cancellation_reason: Mapped[str | None] = mapped_column(
        String(20), default=None
    )  # penalty, no-penalty
    # At most one entitlement source is set
    session_pack_id: Mapped[int | None] = mapped_column(
        ForeignKey("session_packs.id"), default=None
    )
    subscription_id: Mapped[int | None] = mapped_column(
        ForeignKey("client_subscriptions.id"), default=None
    )
    credit_id_consumed: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_session_credits.id"), default=None
    )
    recurring_schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("recurring_schedules.id"), default=None
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_from_credit(self) -> bool:
        return self.credit_id_consumed is not None
