from datetime import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mytrainer.database import Base


class SessionNotification(Base):
    """Delivery record for a reminder; the unique pair makes each reminder send once."""

    __tablename__ = "session_notifications"
    __table_args__ = (UniqueConstraint("session_id", "notification_type"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("sessions.id"))
    notification_type: Mapped[str] = mapped_column(String(30))  # reminder_24h, reminder_2h
    sent_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
