from datetime import timedelta

import pytest
from httpx import AsyncClient

from mytrainer.notifications.dispatcher import NotificationDispatcher
from tests.conftest import (
    NOW,
    RecordingSender,
    add_session,
    create_client,
    create_trainer,
    test_session,
)

RUN = "/api/notifications/reminders/run"


@pytest.mark.asyncio
async def test_run_reminders(
    client: AsyncClient, dispatcher: NotificationDispatcher, sender: RecordingSender
) -> None:
    async with test_session() as session:
        await create_trainer(session)
        await create_client(session)
        await add_session(session, NOW + timedelta(hours=2))

    resp = await client.post(RUN)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "scanned": 1, "sent": 1, "skipped": 0, "failed": 0}
    assert len(sender.sent) == 2

    resp = await client.post(RUN)
    assert resp.json()["skipped"] == 1


@pytest.mark.asyncio
async def test_requires_token_when_configured(
    client: AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("MYTRAINER_API_TOKEN", "cron-token")

    resp = await client.post(RUN)
    assert resp.status_code == 401

    resp = await client.post(RUN, headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401

    resp = await client.post(RUN, headers={"Authorization": "Bearer cron-token"})
    assert resp.status_code == 200
