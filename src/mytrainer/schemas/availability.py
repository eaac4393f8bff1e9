from datetime import date, datetime, time

from pydantic import Field, field_validator

from mytrainer.booking.timeutils import Weekday
from mytrainer.schemas.base import CamelModel


class IntervalRead(CamelModel):
    start: datetime
    end: datetime


class DayAvailabilityRead(CamelModel):
    day: date = Field(alias="date")
    intervals: list[IntervalRead]


class AvailabilityTemplateCreate(CamelModel):
    day_of_week: int
    start_time: time
    end_time: time

    @field_validator("day_of_week", mode="before")
    @classmethod
    def parse_day(cls, value: int | str) -> int:
        # legacy clients send day names
        return int(Weekday.parse(value))


class AvailabilityTemplateRead(AvailabilityTemplateCreate):
    id: int
    trainer_id: int


class AvailabilityExceptionCreate(CamelModel):
    exception_date: date
    exception_type: str = Field(
        pattern=r"^(unavailable_full_day|unavailable_partial_day|available_extra_slot)$"
    )
    start_time: time | None = None
    end_time: time | None = None
    notes: str | None = None


class AvailabilityExceptionRead(AvailabilityExceptionCreate):
    id: int
    trainer_id: int
