from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.api.deps import check_api_token, get_dispatcher, get_now
from mytrainer.database import get_db
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.notifications.reminders import ReminderRun, send_session_reminders
from mytrainer.schemas.notification import ReminderRunRead

router = APIRouter(
    prefix="/api/notifications",
    tags=["notifications"],
    dependencies=[Depends(check_api_token)],
)


@router.post("/reminders/run", response_model=ReminderRunRead)
async def run_reminders(
    session: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ReminderRun:
    """Send due 24h/2h reminders. Safe to call repeatedly, e.g. from cron."""
    return await send_session_reminders(session, dispatcher, now)
