from datetime import datetime, time

from pydantic import Field, field_validator

from mytrainer.booking.timeutils import Weekday
from mytrainer.schemas.base import CamelModel


class TimePreferenceCreate(CamelModel):
    weekday: int
    start_time: time
    end_time: time | None = None
    flex_minutes: int = Field(default=0, ge=0, le=180)
    notes: str | None = None
    is_active: bool = True

    @field_validator("weekday", mode="before")
    @classmethod
    def parse_weekday(cls, value: int | str) -> int:
        return int(Weekday.parse(value))


class TimePreferenceRead(TimePreferenceCreate):
    id: int
    client_id: int
    created_at: datetime
