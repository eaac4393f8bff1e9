from datetime import datetime

from pydantic import Field

from mytrainer.schemas.base import CamelModel


class BookSessionRequest(CamelModel):
    client_id: int
    trainer_id: int
    session_date: datetime
    service_type_id: int
    booking_method: str = Field(pattern=r"^(one-off|pack|subscription)$")
    source_pack_id: int | None = None
    source_subscription_id: int | None = None
    notes: str | None = None


class BookSessionResponse(CamelModel):
    success: bool = True
    session_id: int
    status: str
    message: str
    warning: str | None = None


class SessionRead(CamelModel):
    id: int
    trainer_id: int
    client_id: int
    service_type_id: int
    scheduled_at: datetime
    duration_minutes: int
    status: str
    cancellation_reason: str | None = None
    session_pack_id: int | None = None
    subscription_id: int | None = None
    credit_id_consumed: int | None = None
    recurring_schedule_id: int | None = None
    notes: str | None = None


class CancelSessionRequest(CamelModel):
    penalize: bool | None = None


class EditSessionRequest(CamelModel):
    session_date: datetime
    notes: str | None = None


class SessionNotesRequest(CamelModel):
    notes: str | None = None


class SessionActionResponse(CamelModel):
    success: bool = True
    message: str
    session: SessionRead
