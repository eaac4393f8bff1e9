"""Tests for the conflict checker."""

from datetime import date, time, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mytrainer.booking.availability import create_exception
from mytrainer.booking.conflicts import (
    MSG_BOOKED,
    MSG_UNAVAILABLE,
    MSG_WARNING,
    SlotStatus,
    check_slot,
    find_overlapping_sessions,
)
from mytrainer.booking.errors import ConflictError
from mytrainer.models.trainer import Trainer
from tests.conftest import (
    NOW,
    TRAINER,
    add_session,
    add_template,
    create_client,
    create_trainer,
    melbourne,
    test_session,
)

MONDAY = date(2025, 6, 9)
NEXT_DAY_MONDAY = date(2025, 6, 2)


async def _seed(session: AsyncSession) -> Trainer:
    trainer = await create_trainer(session)
    await create_client(session)
    await add_template(session, 1, "09:00", "12:00")
    return trainer


class TestCheckSlot:
    async def test_free_slot_ok(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            check = await check_slot(session, trainer, melbourne(MONDAY, "09:00"), now=NOW)
            assert check.status is SlotStatus.OK
            assert check.message is None

    async def test_overlap_rejected(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            await add_session(session, melbourne(MONDAY, "09:00"))

            check = await check_slot(session, trainer, melbourne(MONDAY, "09:30"), now=NOW)
            assert check.is_conflict
            assert check.message == MSG_BOOKED

    async def test_back_to_back_allowed(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            await add_session(session, melbourne(MONDAY, "09:00"))

            check = await check_slot(session, trainer, melbourne(MONDAY, "10:00"), now=NOW)
            assert check.status is SlotStatus.OK

    @pytest.mark.parametrize("status", ["cancelled", "no-show"])
    async def test_inactive_sessions_free_the_slot(self, status: str) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            await add_session(session, melbourne(MONDAY, "09:00"), status=status)

            check = await check_slot(session, trainer, melbourne(MONDAY, "09:00"), now=NOW)
            assert check.status is SlotStatus.OK

    async def test_excluded_session_ignored(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            existing = await add_session(session, melbourne(MONDAY, "09:00"))

            check = await check_slot(
                session,
                trainer,
                melbourne(MONDAY, "09:30"),
                exclude_session_id=existing.id,
                now=NOW,
            )
            assert check.status is SlotStatus.OK

    async def test_partial_block_rejects_inside_window(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            await create_exception(
                session, TRAINER, 1, MONDAY, "unavailable_partial_day", time(10), time(11)
            )

            check = await check_slot(session, trainer, melbourne(MONDAY, "10:15"), now=NOW)
            assert check.is_conflict
            assert check.message == MSG_UNAVAILABLE
            with pytest.raises(ConflictError, match="not available"):
                check.raise_for_conflict()

    async def test_session_must_fit_whole_interval(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            # 11:30-12:30 runs past the 12:00 close
            check = await check_slot(session, trainer, melbourne(MONDAY, "11:30"), now=NOW)
            assert check.message == MSG_UNAVAILABLE

    async def test_within_lead_window_warns(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            start = melbourne(NEXT_DAY_MONDAY, "09:00")
            assert start - NOW < timedelta(hours=24)

            check = await check_slot(session, trainer, start, now=NOW)
            assert check.is_warning
            assert check.message == MSG_WARNING
            check.raise_for_conflict()

    async def test_overlap_short_circuits_before_availability(self) -> None:
        async with test_session() as session:
            trainer = await _seed(session)
            await add_session(session, melbourne(MONDAY, "19:00"))

            check = await check_slot(session, trainer, melbourne(MONDAY, "19:30"), now=NOW)
            assert check.message == MSG_BOOKED


async def test_find_overlapping_sessions_window() -> None:
    async with test_session() as session:
        await _seed(session)
        start = melbourne(MONDAY, "10:00")
        before = await add_session(session, start - timedelta(minutes=59))
        await add_session(session, start - timedelta(minutes=60))
        await add_session(session, start + timedelta(minutes=60))
        after = await add_session(session, start + timedelta(minutes=30))

        found = await find_overlapping_sessions(session, 1, start, timedelta(minutes=60))
        assert sorted(s.id for s in found) == sorted([before.id, after.id])
