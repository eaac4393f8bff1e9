from datetime import datetime, time

import pytest

from mytrainer.booking.context import Actor, ActorRole
from mytrainer.booking.errors import AuthorizationError, NotFoundError, ValidationError
from mytrainer.booking.preferences import (
    create_preference,
    delete_preference,
    find_matching_preference,
    list_preferences,
    preferences_overlap,
)
from mytrainer.models.client import ClientTimePreference
from tests.conftest import CLIENT, TRAINER, create_client, create_trainer, test_session


def _pref(weekday: int, start: str, end: str | None = None, flex: int = 0) -> ClientTimePreference:
    return ClientTimePreference(
        client_id=1,
        weekday=weekday,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end) if end else None,
        flex_minutes=flex,
        is_active=True,
    )


class TestOverlap:
    def test_point_preferences_clash_on_same_start(self) -> None:
        assert preferences_overlap(_pref(1, "09:00"), _pref(1, "09:00"))
        assert not preferences_overlap(_pref(1, "09:00"), _pref(1, "09:30"))

    def test_windows(self) -> None:
        assert preferences_overlap(_pref(1, "09:00", "10:00"), _pref(1, "09:30", "11:00"))
        assert not preferences_overlap(_pref(1, "09:00", "10:00"), _pref(1, "10:00", "11:00"))

    def test_point_inside_window(self) -> None:
        assert preferences_overlap(_pref(1, "09:00", "11:00"), _pref(1, "10:00"))

    def test_other_weekday(self) -> None:
        assert not preferences_overlap(_pref(1, "09:00"), _pref(2, "09:00"))


class TestMatching:
    def test_flex_window(self) -> None:
        prefs = [_pref(1, "09:00", flex=30)]
        # 2 June 2025 is a Monday
        assert find_matching_preference(prefs, datetime(2025, 6, 2, 9, 30)) is prefs[0]
        assert find_matching_preference(prefs, datetime(2025, 6, 2, 8, 30)) is prefs[0]
        assert find_matching_preference(prefs, datetime(2025, 6, 2, 9, 31)) is None

    def test_wrong_day_or_inactive(self) -> None:
        pref = _pref(1, "09:00")
        assert find_matching_preference([pref], datetime(2025, 6, 3, 9, 0)) is None
        pref.is_active = False
        assert find_matching_preference([pref], datetime(2025, 6, 2, 9, 0)) is None


class TestManagement:
    async def _seed(self) -> None:
        async with test_session() as session:
            await create_trainer(session)
            await create_client(session)

    async def test_create_and_list(self) -> None:
        await self._seed()
        async with test_session() as session:
            await create_preference(
                session, CLIENT, 1, weekday=3, start_time=time(18, 0), flex_minutes=15
            )
            await create_preference(session, TRAINER, 1, weekday=1, start_time=time(7, 0))
            prefs = await list_preferences(session, CLIENT, 1)
        assert [(p.weekday, p.start_time) for p in prefs] == [(1, time(7, 0)), (3, time(18, 0))]

    async def test_overlap_rejected(self) -> None:
        await self._seed()
        async with test_session() as session:
            await create_preference(
                session, CLIENT, 1, weekday=1, start_time=time(9, 0), end_time=time(10, 0)
            )
            with pytest.raises(ValidationError, match="existing Monday preference at 09:00"):
                await create_preference(session, CLIENT, 1, weekday=1, start_time=time(9, 30))

    async def test_inactive_preference_skips_overlap_check(self) -> None:
        await self._seed()
        async with test_session() as session:
            await create_preference(session, CLIENT, 1, weekday=1, start_time=time(9, 0))
            pref = await create_preference(
                session, CLIENT, 1, weekday=1, start_time=time(9, 0), is_active=False
            )
            assert pref.is_active is False
            assert len(await list_preferences(session, CLIENT, 1, active_only=False)) == 2

    async def test_bounds(self) -> None:
        await self._seed()
        async with test_session() as session:
            with pytest.raises(ValidationError, match="End time must be after start time"):
                await create_preference(
                    session, CLIENT, 1, weekday=1, start_time=time(9, 0), end_time=time(8, 0)
                )
            with pytest.raises(ValidationError, match="Flex minutes"):
                await create_preference(
                    session, CLIENT, 1, weekday=1, start_time=time(9, 0), flex_minutes=240
                )

    async def test_other_client_forbidden(self) -> None:
        await self._seed()
        async with test_session() as session:
            with pytest.raises(AuthorizationError):
                await list_preferences(session, Actor(ActorRole.CLIENT, 2), 1)
            with pytest.raises(AuthorizationError):
                await list_preferences(session, Actor(ActorRole.TRAINER, 2), 1)

    async def test_delete(self) -> None:
        await self._seed()
        async with test_session() as session:
            pref = await create_preference(session, CLIENT, 1, weekday=1, start_time=time(9, 0))
            await delete_preference(session, CLIENT, 1, pref.id)
            assert await list_preferences(session, CLIENT, 1) == []
            with pytest.raises(NotFoundError):
                await delete_preference(session, CLIENT, 1, pref.id)
