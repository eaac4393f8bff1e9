from datetime import date, time

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mytrainer.database import Base


class AvailabilityTemplate(Base):
    __tablename__ = "availability_templates"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"))
    day_of_week: Mapped[int]  # 0=Sunday, 6=Saturday
    start_time: Mapped[time]
    end_time: Mapped[time]


class AvailabilityException(Base):
    __tablename__ = "availability_exceptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    trainer_id: Mapped[int] = mapped_column(ForeignKey("trainers.id"))
    exception_date: Mapped[date]
    exception_type: Mapped[str] = mapped_column(
        String(30)
    )  # unavailable_full_day, unavailable_partial_day, available_extra_slot
    start_time: Mapped[time | None] = mapped_column(default=None)
    end_time: Mapped[time | None] = mapped_column(default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
