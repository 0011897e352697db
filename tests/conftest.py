import uuid
from datetime import datetime
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import (
    Base,
    DevicePlatform,
    FeedingSchedule,
    Pet,
    RecurrenceFrequency,
    RecurrenceRule,
    EventType,
    ReminderPreset,
    UserBudget,
    UserDevice,
    UserSettings,
)
from app.services.notifications.push_gateway import (
    PushDeliveryStatus,
    PushMessage,
    PushResult,
)


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class FakePushGateway:
    """
    Records every message and answers from a per-token script.

    ``outcomes`` maps a token to a list of statuses consumed one per send;
    tokens without a script are delivered.
    """

    def __init__(self, outcomes: Optional[Dict[str, List[PushDeliveryStatus]]] = None):
        self.outcomes = outcomes or {}
        self.sent: List[PushMessage] = []

    async def send(self, messages):
        results = []
        for message in messages:
            self.sent.append(message)
            script = self.outcomes.get(message.to)
            status = script.pop(0) if script else PushDeliveryStatus.DELIVERED
            if status == PushDeliveryStatus.DELIVERED:
                results.append(
                    PushResult(
                        token=message.to,
                        status=status,
                        message_id=f"ticket-{len(self.sent)}",
                    )
                )
            elif status == PushDeliveryStatus.PERMANENT_FAILURE:
                results.append(
                    PushResult(token=message.to, status=status, error="DeviceNotRegistered")
                )
            else:
                results.append(
                    PushResult(token=message.to, status=status, error="MessageRateExceeded")
                )
        return results


@pytest.fixture
def fake_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


# Test data factories
@pytest_asyncio.fixture
async def sample_pet(db_session: AsyncSession, user_id: uuid.UUID) -> Pet:
    pet = Pet(id=uuid.uuid4(), user_id=user_id, name="Luna", species="dog")
    db_session.add(pet)
    await db_session.commit()
    await db_session.refresh(pet)
    return pet


@pytest_asyncio.fixture
async def sample_settings(db_session: AsyncSession, user_id: uuid.UUID) -> UserSettings:
    user_settings = UserSettings(
        user_id=user_id,
        base_currency="TRY",
        timezone="UTC",
        language="en",
        default_event_time="09:00",
        notifications_enabled=True,
        budget_notifications_enabled=True,
    )
    db_session.add(user_settings)
    await db_session.commit()
    await db_session.refresh(user_settings)
    return user_settings


@pytest_asyncio.fixture
async def sample_device(db_session: AsyncSession, user_id: uuid.UUID) -> UserDevice:
    device = UserDevice(
        user_id=user_id,
        expo_push_token="ExponentPushToken[device-1]",
        device_id="device-1",
        platform=DevicePlatform.IOS,
        is_active=True,
        last_active_at=datetime(2024, 1, 1),
    )
    db_session.add(device)
    await db_session.commit()
    await db_session.refresh(device)
    return device


def make_rule(user_id: uuid.UUID, pet_id: uuid.UUID, **overrides) -> RecurrenceRule:
    values = dict(
        user_id=user_id,
        pet_id=pet_id,
        title="Morning walk",
        type=EventType.WALK,
        reminder=True,
        reminder_preset=ReminderPreset.STANDARD,
        frequency=RecurrenceFrequency.DAILY,
        interval=1,
        daily_times=["08:00"],
        timezone="UTC",
        start_date=datetime(2024, 1, 1),
        is_active=True,
    )
    values.update(overrides)
    return RecurrenceRule(**values)


@pytest.fixture
def rule_factory():
    """Unsaved RecurrenceRule with sensible defaults; keyword overrides win."""
    return make_rule


@pytest_asyncio.fixture
async def sample_rule(
    db_session: AsyncSession, user_id: uuid.UUID, sample_pet: Pet
) -> RecurrenceRule:
    rule = make_rule(user_id, sample_pet.id)
    db_session.add(rule)
    await db_session.commit()
    await db_session.refresh(rule)
    return rule


@pytest_asyncio.fixture
async def sample_schedule(
    db_session: AsyncSession, user_id: uuid.UUID, sample_pet: Pet
) -> FeedingSchedule:
    schedule = FeedingSchedule(
        user_id=user_id,
        pet_id=sample_pet.id,
        time="08:00",
        food_type="dry food",
        amount="200g",
        days="monday,wednesday,friday",
        is_active=True,
        reminders_enabled=True,
        reminder_minutes_before=15,
    )
    db_session.add(schedule)
    await db_session.commit()
    await db_session.refresh(schedule)
    return schedule


@pytest_asyncio.fixture
async def sample_budget(db_session: AsyncSession, user_id: uuid.UUID) -> UserBudget:
    budget = UserBudget(
        user_id=user_id,
        amount=1000.0,
        currency="TRY",
        alert_threshold=0.8,
        is_active=True,
    )
    db_session.add(budget)
    await db_session.commit()
    await db_session.refresh(budget)
    return budget
