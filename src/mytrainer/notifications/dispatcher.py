"""Fire-and-forget notification dispatch over the Resend email API.

Delivery never raises to the caller: a disabled kill-switch skips the send,
and any delivery failure is logged and dropped. Booking success must not
depend on email.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import resend

from mytrainer.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    to: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


class ResendEmailSender:
    """Blocking sender; the dispatcher runs it on a worker thread."""

    def __init__(self, api_key: str | None = None, from_email: str | None = None) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.email_resend_api_key
        self._from_email = from_email or settings.email_from

    def send(self, notification: Notification) -> dict[str, Any]:
        if not self._api_key:
            raise RuntimeError("Resend API key not configured")
        resend.api_key = self._api_key
        params: dict[str, Any] = {
            "from": self._from_email,
            "to": [notification.to],
            "subject": notification.data.get("subject", notification.type),
            "text": notification.data.get("body", ""),
        }
        return resend.Emails.send(params)


class NotificationDispatcher:
    """Schedules notification delivery without blocking the request."""

    def __init__(self, sender: Any | None = None, enabled: bool | None = None) -> None:
        self._sender = sender or ResendEmailSender()
        self._enabled = get_settings().email_enabled if enabled is None else enabled
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send(self, notification: Notification) -> bool:
        """Deliver one notification. Returns False when skipped or failed."""
        if not self._enabled:
            logger.info("[email] skipped (disabled) type=%s to=%s", notification.type, notification.to)
            return False
        try:
            await asyncio.to_thread(self._sender.send, notification)
        except Exception as e:
            logger.warning(
                "[email] failed type=%s to=%s error=%s", notification.type, notification.to, e
            )
            return False
        logger.info("[email] sent type=%s to=%s", notification.type, notification.to)
        return True

    def fire(self, notification: Notification) -> None:
        """Schedule delivery on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(self.send(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def fire_all(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            self.fire(notification)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
