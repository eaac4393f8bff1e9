from collections.abc import AsyncGenerator, Generator
from datetime import date, datetime, time
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mytrainer.api.deps import get_now
from mytrainer.booking.context import Actor, ActorRole
from mytrainer.booking.timeutils import get_zone, local_to_utc
from mytrainer.database import Base, get_db
from mytrainer.main import app
from mytrainer.models.availability import AvailabilityTemplate
from mytrainer.models.client import Client, ClientTimePreference
from mytrainer.models.entitlement import ServiceAllocation, SessionPack, Subscription
from mytrainer.models.session import TrainingSession
from mytrainer.models.trainer import ServiceType, Trainer
from mytrainer.notifications.dispatcher import Notification, NotificationDispatcher

test_engine = create_async_engine("sqlite+aiosqlite://", echo=False)
test_session = async_sessionmaker(test_engine, expire_on_commit=False)

# Sunday 1 June 2025, 10:00 in Melbourne (AEST, UTC+10)
NOW = datetime(2025, 6, 1, 0, 0)
MELBOURNE = get_zone("Australia/Melbourne")

TRAINER = Actor(ActorRole.TRAINER, 1)
CLIENT = Actor(ActorRole.CLIENT, 1)
TRAINER_HEADERS = {"X-Actor-Role": "trainer", "X-Actor-Id": "1"}
CLIENT_HEADERS = {"X-Actor-Role": "client", "X-Actor-Id": "1"}


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session() as session:
        yield session


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_now] = lambda: NOW


class RecordingSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[Notification] = []
        self.fail = fail

    def send(self, notification: Notification) -> dict[str, str]:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(notification)
        return {"id": f"email-{len(self.sent)}"}


@pytest.fixture(autouse=True)
async def setup_db() -> AsyncGenerator[None, None]:
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def dispatcher(sender: RecordingSender) -> Generator[NotificationDispatcher, None, None]:
    """Enabled dispatcher recording deliveries, installed on the app for the test."""
    previous = app.state.dispatcher
    app.state.dispatcher = NotificationDispatcher(sender=sender, enabled=True)
    yield app.state.dispatcher
    app.state.dispatcher = previous


def melbourne(day: date, wall: str) -> datetime:
    """Naive UTC instant for a Melbourne wall-clock time."""
    return local_to_utc(day, time.fromisoformat(wall), MELBOURNE)


async def create_trainer(
    session: AsyncSession, trainer_id: int = 1, **kwargs: object
) -> Trainer:
    trainer = Trainer(
        id=trainer_id,
        name=kwargs.pop("name", f"Trainer {trainer_id}"),
        contact_email=kwargs.pop("contact_email", f"trainer{trainer_id}@example.com"),
        **kwargs,
    )
    session.add(trainer)
    session.add(ServiceType(id=trainer_id, trainer_id=trainer_id, name="PT 60"))
    await session.commit()
    return trainer


async def create_client(
    session: AsyncSession, client_id: int = 1, trainer_id: int = 1, **kwargs: object
) -> Client:
    client = Client(
        id=client_id,
        trainer_id=trainer_id,
        name=kwargs.pop("name", f"Client {client_id}"),
        email=kwargs.pop("email", f"client{client_id}@example.com"),
        **kwargs,
    )
    session.add(client)
    await session.commit()
    return client


async def add_template(
    session: AsyncSession,
    weekday: int,
    start: str = "06:00",
    end: str = "20:00",
    trainer_id: int = 1,
) -> AvailabilityTemplate:
    template = AvailabilityTemplate(
        trainer_id=trainer_id,
        day_of_week=weekday,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
    )
    session.add(template)
    await session.commit()
    return template


async def open_every_day(session: AsyncSession, trainer_id: int = 1) -> None:
    for weekday in range(7):
        session.add(
            AvailabilityTemplate(
                trainer_id=trainer_id,
                day_of_week=weekday,
                start_time=time(6, 0),
                end_time=time(20, 0),
            )
        )
    await session.commit()


async def create_pack(
    session: AsyncSession,
    total: int = 5,
    remaining: int | None = None,
    client_id: int = 1,
    trainer_id: int = 1,
    status: str = "active",
) -> SessionPack:
    pack = SessionPack(
        trainer_id=trainer_id,
        client_id=client_id,
        service_type_id=trainer_id,
        total_sessions=total,
        sessions_remaining=total if remaining is None else remaining,
        status=status,
    )
    session.add(pack)
    await session.commit()
    return pack


async def create_subscription(
    session: AsyncSession, client_id: int = 1, trainer_id: int = 1, status: str = "active"
) -> Subscription:
    subscription = Subscription(trainer_id=trainer_id, client_id=client_id, status=status)
    session.add(subscription)
    await session.flush()
    session.add(
        ServiceAllocation(
            subscription_id=subscription.id,
            service_type_id=trainer_id,
            quantity_per_period=2,
            period_type="weekly",
            cost_per_session=Decimal("85.00"),
        )
    )
    await session.commit()
    return subscription


async def add_session(
    session: AsyncSession,
    scheduled_at: datetime,
    status: str = "scheduled",
    trainer_id: int = 1,
    client_id: int = 1,
    **kwargs: object,
) -> TrainingSession:
    row = TrainingSession(
        trainer_id=trainer_id,
        client_id=client_id,
        service_type_id=trainer_id,
        scheduled_at=scheduled_at,
        status=status,
        **kwargs,
    )
    session.add(row)
    await session.commit()
    return row


async def add_preference(
    session: AsyncSession,
    weekday: int,
    start: str,
    client_id: int = 1,
    **kwargs: object,
) -> ClientTimePreference:
    pref = ClientTimePreference(
        client_id=client_id,
        weekday=weekday,
        start_time=time.fromisoformat(start),
        **kwargs,
    )
    session.add(pref)
    await session.commit()
    return pref
