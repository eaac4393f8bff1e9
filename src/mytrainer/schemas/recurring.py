from datetime import date, datetime, time
from typing import Literal

from pydantic import Field, model_validator

from mytrainer.schemas.base import CamelModel


class ExcludedSession(CamelModel):
    day: date = Field(alias="date")
    start: time = Field(alias="time")


class RecurringScheduleRequest(CamelModel):
    action: Literal["preview", "confirm"]
    trainer_id: int
    client_id: int
    preference_ids: list[int] = Field(min_length=1, max_length=10)
    start_date: date
    end_date: date
    booking_method: str = Field(pattern=r"^(one-off|pack|subscription)$")
    service_type_id: int
    session_pack_id: int | None = None
    subscription_id: int | None = None
    pattern_name: str | None = Field(default=None, max_length=100)
    excluded_sessions: list[ExcludedSession] = []

    @model_validator(mode="after")
    def check_entitlement_reference(self) -> "RecurringScheduleRequest":
        if self.booking_method == "pack" and self.session_pack_id is None:
            raise ValueError("sessionPackId is required for pack schedules")
        if self.booking_method == "subscription" and self.subscription_id is None:
            raise ValueError("subscriptionId is required for subscription schedules")
        return self


class ProposedSessionRead(CamelModel):
    day: date = Field(alias="date")
    start: str = Field(alias="time")
    weekday: int
    preference_id: int
    utc: datetime
    status: str
    message: str | None = None


class PreviewStats(CamelModel):
    total_proposed: int
    conflicts: int
    warnings: int


class RecurringPreviewResponse(CamelModel):
    success: bool = True
    sessions: list[ProposedSessionRead]
    stats: PreviewStats


class RecurringConfirmResponse(CamelModel):
    success: bool = True
    recurring_schedule_id: int
    sessions_created: int
    message: str
