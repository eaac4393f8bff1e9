"""Tests for the recurring schedule generator."""

from datetime import date, datetime, time
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from mytrainer.booking import recurring
from mytrainer.booking.conflicts import SlotStatus
from mytrainer.booking.errors import (
    AuthorizationError,
    ConcurrencyError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from mytrainer.booking.recurring import (
    RecurringRequest,
    RecurringScheduleGenerator,
    expand_preferences,
    idempotency_key,
)
from mytrainer.booking.timeutils import Weekday
from mytrainer.models.client import ClientTimePreference
from mytrainer.models.entitlement import SessionPack
from mytrainer.models.schedule import RecurringSchedule, RecurringSchedulePreference
from mytrainer.models.session import TrainingSession
from tests.conftest import (
    CLIENT,
    NOW,
    TRAINER,
    add_preference,
    add_session,
    create_client,
    create_pack,
    create_trainer,
    melbourne,
    open_every_day,
    test_session,
)

# Melbourne switches from AEST (+10) to AEDT (+11) on Sunday 5 October 2025
DST_START = date(2025, 9, 29)
DST_END = date(2025, 10, 19)


def _pref(pref_id: int, weekday: Weekday, start: str) -> ClientTimePreference:
    return ClientTimePreference(
        id=pref_id, client_id=1, weekday=int(weekday), start_time=time.fromisoformat(start)
    )


async def _seed(pack_total: int = 10) -> tuple[list[int], int]:
    async with test_session() as session:
        await create_trainer(session)
        await create_client(session)
        await open_every_day(session)
        monday = await add_preference(session, Weekday.MONDAY, "09:00")
        wednesday = await add_preference(session, Weekday.WEDNESDAY, "14:00")
        pack = await create_pack(session, total=pack_total)
        return [monday.id, wednesday.id], pack.id


def _request(pref_ids: list[int], pack_id: int | None, **kwargs: object) -> RecurringRequest:
    params: dict[str, object] = {
        "trainer_id": 1,
        "client_id": 1,
        "preference_ids": pref_ids,
        "start_date": DST_START,
        "end_date": DST_END,
        "booking_method": "pack",
        "service_type_id": 1,
        "pack_id": pack_id,
    }
    params.update(kwargs)
    return RecurringRequest(**params)  # type: ignore[arg-type]


async def _count(model: type) -> int:
    async with test_session() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


class TestExpandPreferences:
    def test_two_preferences_three_weeks_across_dst(self) -> None:
        proposed = expand_preferences(
            [_pref(1, Weekday.MONDAY, "09:00"), _pref(2, Weekday.WEDNESDAY, "14:00")],
            DST_START,
            DST_END,
            "Australia/Melbourne",
        )
        assert [p.utc for p in proposed] == [
            datetime(2025, 9, 28, 23, 0),  # Mon 29 Sep 09:00 AEST
            datetime(2025, 10, 1, 4, 0),  # Wed 1 Oct 14:00 AEST
            datetime(2025, 10, 5, 22, 0),  # Mon 6 Oct 09:00 AEDT
            datetime(2025, 10, 8, 3, 0),
            datetime(2025, 10, 12, 22, 0),
            datetime(2025, 10, 15, 3, 0),
        ]
        assert {p.time for p in proposed} == {time(9, 0), time(14, 0)}
        assert [p.weekday for p in proposed[:2]] == [Weekday.MONDAY, Weekday.WEDNESDAY]

    def test_range_end_is_inclusive(self) -> None:
        proposed = expand_preferences(
            [_pref(1, Weekday.MONDAY, "09:00")], date(2025, 6, 2), date(2025, 6, 16), "UTC"
        )
        assert [p.date for p in proposed] == [
            date(2025, 6, 2),
            date(2025, 6, 9),
            date(2025, 6, 16),
        ]

    def test_exclusions_dropped(self) -> None:
        proposed = expand_preferences(
            [_pref(1, Weekday.MONDAY, "09:00")],
            date(2025, 6, 2),
            date(2025, 6, 16),
            "UTC",
            excluded=[(date(2025, 6, 9), time(9, 0))],
        )
        assert [p.date for p in proposed] == [date(2025, 6, 2), date(2025, 6, 16)]


class TestIdempotencyKey:
    def test_stable_under_preference_order(self) -> None:
        a = _request([1, 2], 7)
        b = _request([2, 1], 7)
        assert idempotency_key(a) == idempotency_key(b)
        assert len(idempotency_key(a)) == 64

    def test_changes_with_range(self) -> None:
        a = _request([1, 2], 7)
        b = _request([1, 2], 7, end_date=date(2025, 10, 26))
        assert idempotency_key(a) != idempotency_key(b)


class TestPreview:
    async def test_preview_persists_nothing(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            preview = await RecurringScheduleGenerator(session).preview(
                TRAINER, _request(pref_ids, pack_id), NOW
            )
        assert len(preview.sessions) == 6
        assert preview.conflicts == 0
        assert await _count(TrainingSession) == 0
        assert await _count(RecurringSchedule) == 0

    async def test_existing_booking_flagged(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            await add_session(session, melbourne(date(2025, 10, 6), "09:00"))
            preview = await RecurringScheduleGenerator(session).preview(
                TRAINER, _request(pref_ids, pack_id), NOW
            )
        flagged = [p for p in preview.sessions if p.status is SlotStatus.CONFLICT]
        assert [p.date for p in flagged] == [date(2025, 10, 6)]
        assert flagged[0].message == "Timeslot already booked"

    async def test_overlap_within_batch_flagged(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            late = await add_preference(session, Weekday.MONDAY, "09:30")
            preview = await RecurringScheduleGenerator(session).preview(
                TRAINER, _request([pref_ids[0], late.id], pack_id), NOW
            )
        flagged = [p for p in preview.sessions if p.status is SlotStatus.CONFLICT]
        assert len(flagged) == 3
        assert all(p.preference_id == late.id for p in flagged)
        assert flagged[0].message == "Overlaps another session in this schedule"

    async def test_past_items_flagged(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            preview = await RecurringScheduleGenerator(session).preview(
                TRAINER,
                _request(pref_ids, pack_id),
                datetime(2025, 10, 2, 0, 0),
            )
        past = [p for p in preview.sessions if p.message == "Time is in the past"]
        assert len(past) == 2

    async def test_only_trainer_may_generate(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            with pytest.raises(AuthorizationError):
                await RecurringScheduleGenerator(session).preview(
                    CLIENT, _request(pref_ids, pack_id), NOW
                )

    async def test_end_must_follow_start(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            with pytest.raises(ValidationError, match="endDate must be after startDate"):
                await RecurringScheduleGenerator(session).preview(
                    TRAINER, _request(pref_ids, pack_id, end_date=DST_START), NOW
                )

    async def test_inactive_preferences_rejected(self) -> None:
        await _seed()
        async with test_session() as session:
            inactive = await add_preference(session, Weekday.FRIDAY, "07:00", is_active=False)
            with pytest.raises(ValidationError, match="No active preferences"):
                await RecurringScheduleGenerator(session).preview(
                    TRAINER, _request([inactive.id], None, booking_method="one-off"), NOW
                )

    async def test_batch_cap(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MYTRAINER_MAX_SESSIONS_PER_SCHEDULE", "5")
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            with pytest.raises(ValidationError, match=r"Too many sessions \(6\)\. Max 5"):
                await RecurringScheduleGenerator(session).preview(
                    TRAINER, _request(pref_ids, pack_id), NOW
                )

    async def test_feature_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MYTRAINER_RECURRING_SESSIONS_ENABLED", "false")
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            with pytest.raises(NotFoundError, match="Feature not available"):
                await RecurringScheduleGenerator(session).preview(
                    TRAINER, _request(pref_ids, pack_id), NOW
                )


class TestConfirm:
    async def test_creates_schedule_sessions_and_consumes_pack(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            result = await RecurringScheduleGenerator(session).confirm(
                TRAINER, _request(pref_ids, pack_id, pattern_name="Mon/Wed"), NOW
            )
        assert result.sessions_created == 6
        assert not result.replayed
        assert await _count(TrainingSession) == 6
        assert await _count(RecurringSchedulePreference) == 2

        async with test_session() as session:
            pack = await session.get(SessionPack, pack_id)
            assert pack is not None
            assert pack.sessions_remaining == 4
            schedule = await session.get(RecurringSchedule, result.schedule_id)
            assert schedule is not None
            assert schedule.total_sessions_generated == 6

    async def test_second_confirm_is_a_replay(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            first = await RecurringScheduleGenerator(session).confirm(
                TRAINER, _request(pref_ids, pack_id), NOW
            )
        async with test_session() as session:
            second = await RecurringScheduleGenerator(session).confirm(
                TRAINER, _request(list(reversed(pref_ids)), pack_id), NOW
            )
        assert second.schedule_id == first.schedule_id
        assert second.sessions_created == 0
        assert second.message == "Idempotent: already created"
        assert await _count(TrainingSession) == 6

    async def test_conflicting_items_skipped(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            await add_session(session, melbourne(date(2025, 10, 8), "14:00"))
            result = await RecurringScheduleGenerator(session).confirm(
                TRAINER, _request(pref_ids, pack_id), NOW
            )
        assert result.sessions_created == 5

    async def test_pack_must_cover_whole_batch(self) -> None:
        pref_ids, pack_id = await _seed(pack_total=4)
        async with test_session() as session:
            with pytest.raises(EntitlementError, match="4 session\\(s\\) available, 6 needed"):
                await RecurringScheduleGenerator(session).confirm(
                    TRAINER, _request(pref_ids, pack_id), NOW
                )
        assert await _count(RecurringSchedule) == 0
        assert await _count(TrainingSession) == 0

    async def test_one_off_batch_awaits_approval(self) -> None:
        pref_ids, _ = await _seed()
        async with test_session() as session:
            await RecurringScheduleGenerator(session).confirm(
                TRAINER, _request(pref_ids, None, booking_method="one-off"), NOW
            )
            result = await session.execute(select(TrainingSession.status).distinct())
            assert result.scalars().all() == ["pending_approval"]

    async def test_failure_after_insert_undoes_everything(self) -> None:
        pref_ids, pack_id = await _seed()
        async with test_session() as session:
            with patch.object(
                recurring,
                "bump_booking_version",
                AsyncMock(side_effect=ConcurrencyError("Another booking was made")),
            ):
                with pytest.raises(ConcurrencyError):
                    await RecurringScheduleGenerator(session).confirm(
                        TRAINER, _request(pref_ids, pack_id), NOW
                    )
        assert await _count(TrainingSession) == 0
        assert await _count(RecurringSchedulePreference) == 0
        assert await _count(RecurringSchedule) == 0
        async with test_session() as session:
            pack = await session.get(SessionPack, pack_id)
            assert pack is not None
            assert pack.sessions_remaining == 10
