from mytrainer.schemas.availability import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionRead,
    AvailabilityTemplateCreate,
    AvailabilityTemplateRead,
    DayAvailabilityRead,
    IntervalRead,
)
from mytrainer.schemas.notification import ReminderRunRead
from mytrainer.schemas.pack import PackStatsRead
from mytrainer.schemas.preference import TimePreferenceCreate, TimePreferenceRead
from mytrainer.schemas.recurring import (
    ExcludedSession,
    PreviewStats,
    ProposedSessionRead,
    RecurringConfirmResponse,
    RecurringPreviewResponse,
    RecurringScheduleRequest,
)
from mytrainer.schemas.session import (
    BookSessionRequest,
    BookSessionResponse,
    CancelSessionRequest,
    EditSessionRequest,
    SessionActionResponse,
    SessionNotesRequest,
    SessionRead,
)
from mytrainer.schemas.system import StatusResponse

__all__ = [
    "AvailabilityExceptionCreate",
    "AvailabilityExceptionRead",
    "AvailabilityTemplateCreate",
    "AvailabilityTemplateRead",
    "BookSessionRequest",
    "BookSessionResponse",
    "CancelSessionRequest",
    "DayAvailabilityRead",
    "EditSessionRequest",
    "ExcludedSession",
    "IntervalRead",
    "PackStatsRead",
    "PreviewStats",
    "ProposedSessionRead",
    "RecurringConfirmResponse",
    "RecurringPreviewResponse",
    "RecurringScheduleRequest",
    "ReminderRunRead",
    "SessionActionResponse",
    "SessionNotesRequest",
    "SessionRead",
    "StatusResponse",
    "TimePreferenceCreate",
    "TimePreferenceRead",
]
