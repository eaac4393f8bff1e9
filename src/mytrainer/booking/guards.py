"""Concurrency guards shared by booking, recurring generation and rescheduling.

There is no multi-statement transaction around a booking. Each step commits
on its own; a later failure is undone by explicit compensating actions run in
reverse order of creation (`Compensations`). Two writers to the same calendar
are detected with a compare-and-swap on the trainer's `booking_version`.
"""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.errors import ConcurrencyError, NotFoundError
from mytrainer.models.trainer import Trainer

logger = logging.getLogger(__name__)


async def read_booking_version(session: AsyncSession, trainer_id: int) -> int:
    result = await session.execute(
        select(Trainer.booking_version).where(Trainer.id == trainer_id)
    )
    version = result.scalar_one_or_none()
    if version is None:
        raise NotFoundError("Trainer not found.")
    return version


async def bump_booking_version(session: AsyncSession, trainer_id: int, seen: int) -> None:
    """Advance the trainer's calendar version if nobody else has since `seen`.

    Must run after the new session rows are committed, so a booking that reads
    the bumped version is guaranteed to see them in its overlap check.
    Does not commit.
    """
    updated = await session.execute(
        update(Trainer)
        .where(Trainer.id == trainer_id, Trainer.booking_version == seen)
        .values(booking_version=seen + 1)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount == 0:
        logger.warning("Lost calendar race for trainer %s at version %s", trainer_id, seen)
        raise ConcurrencyError(
            "Another booking for this trainer was made at the same time. Please retry."
        )


class Compensations:
    """Undo log for a multi-step write.

    Usage::

        async with Compensations(db) as undo:
            row = await insert(...)
            undo.add("delete session", delete_session, row.id)
            ...

    If the block raises, the session is rolled back and every registered
    action runs newest-first, each committed on its own. On success nothing
    runs.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._stack = AsyncExitStack()

    def add(
        self,
        label: str,
        action: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        async def _run() -> None:
            try:
                await action(self._session, *args)
                await self._session.commit()
                logger.info("Compensated: %s", label)
            except Exception:
                await self._session.rollback()
                logger.exception("Compensation failed: %s", label)

        self._stack.push_async_callback(_run)

    async def __aenter__(self) -> "Compensations":
        await self._stack.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is None:
            self._stack.pop_all()
            return False
        await self._session.rollback()
        return await self._stack.__aexit__(exc_type, exc, tb)
