import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.db.models import (
    Event,
    EventNotification,
    EventStatus,
    EventType,
    NotificationStatus,
)
from app.schemas.recurrence_schemas import UpdateEventRequest
from app.services.occurrence_service import OccurrenceService


def _event(user_id, pet_id, start_time, rule_id=None, **overrides) -> Event:
    values = dict(
        user_id=user_id,
        pet_id=pet_id,
        recurrence_rule_id=rule_id,
        title="Morning walk",
        type=EventType.WALK,
        reminder=True,
        start_time=start_time,
        status=EventStatus.UPCOMING,
        scheduled_notification_ids=["ticket-1"],
    )
    values.update(overrides)
    return Event(**values)


@pytest_asyncio.fixture
async def rule_event(db_session, user_id, sample_rule) -> Event:
    event = _event(user_id, sample_rule.pet_id, datetime(2024, 6, 1, 12, 0), sample_rule.id)
    db_session.add(event)
    await db_session.flush()
    db_session.add_all(
        [
            EventNotification(
                user_id=user_id,
                event_id=event.id,
                notification_key=f"{event.id}:sent",
                scheduled_for=datetime(2024, 5, 31, 12, 0),
                status=NotificationStatus.SENT,
            ),
            EventNotification(
                user_id=user_id,
                event_id=event.id,
                notification_key=f"{event.id}:pending",
                scheduled_for=datetime(2024, 6, 1, 11, 45),
                status=NotificationStatus.PENDING,
            ),
        ]
    )
    await db_session.commit()
    await db_session.refresh(event)
    return event


async def _ledger_statuses(db_session, event_id):
    result = await db_session.execute(
        select(EventNotification.status)
        .where(EventNotification.event_id == event_id)
        .order_by(EventNotification.scheduled_for)
    )
    return list(result.scalars().all())


class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_complete_event(self, db_session, user_id, rule_event):
        event = await OccurrenceService(db_session).complete_event(user_id, rule_event.id)
        assert event.status == EventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_cancels_unsent_reminders(self, db_session, user_id, rule_event):
        event = await OccurrenceService(db_session).cancel_event(user_id, rule_event.id)

        assert event.status == EventStatus.CANCELLED
        assert event.scheduled_notification_ids == []
        assert await _ledger_statuses(db_session, rule_event.id) == [
            NotificationStatus.SENT,
            NotificationStatus.CANCELLED,
        ]

    @pytest.mark.asyncio
    async def test_completed_event_cannot_be_cancelled(self, db_session, user_id, rule_event):
        service = OccurrenceService(db_session)
        await service.complete_event(user_id, rule_event.id)

        with pytest.raises(ValueError, match="INVALID_STATUS_TRANSITION"):
            await service.cancel_event(user_id, rule_event.id)

    @pytest.mark.asyncio
    async def test_reset_returns_to_upcoming(self, db_session, user_id, rule_event):
        service = OccurrenceService(db_session)
        await service.complete_event(user_id, rule_event.id)

        event = await service.reset_event(user_id, rule_event.id)
        assert event.status == EventStatus.UPCOMING

    @pytest.mark.asyncio
    async def test_same_status_is_a_no_op(self, db_session, user_id, rule_event):
        event = await OccurrenceService(db_session).reset_event(user_id, rule_event.id)
        assert event.status == EventStatus.UPCOMING

    @pytest.mark.asyncio
    async def test_other_users_event_is_not_found(self, db_session, rule_event):
        with pytest.raises(ValueError, match="EVENT_NOT_FOUND"):
            await OccurrenceService(db_session).complete_event(uuid.uuid4(), rule_event.id)


class TestUpdateEvent:
    @pytest.mark.asyncio
    async def test_edit_marks_rule_event_as_exception(self, db_session, user_id, rule_event):
        event = await OccurrenceService(db_session).update_event(
            user_id, rule_event.id, UpdateEventRequest(title="Evening walk")
        )

        assert event.title == "Evening walk"
        assert event.is_exception is True
        # Reminders stay scheduled when the time did not move
        assert event.scheduled_notification_ids == ["ticket-1"]

    @pytest.mark.asyncio
    async def test_moving_start_time_cancels_reminders(self, db_session, user_id, rule_event):
        event = await OccurrenceService(db_session).update_event(
            user_id,
            rule_event.id,
            UpdateEventRequest(start_time=datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)),
        )

        assert event.start_time == datetime(2024, 6, 1, 15, 0)
        assert event.scheduled_notification_ids == []
        assert NotificationStatus.PENDING not in await _ledger_statuses(
            db_session, rule_event.id
        )

    @pytest.mark.asyncio
    async def test_standalone_event_is_not_an_exception(
        self, db_session, user_id, sample_pet
    ):
        standalone = _event(user_id, sample_pet.id, datetime(2024, 6, 1, 12, 0))
        db_session.add(standalone)
        await db_session.commit()

        event = await OccurrenceService(db_session).update_event(
            user_id, standalone.id, UpdateEventRequest(notes="Bring the ball")
        )
        assert event.notes == "Bring the ball"
        assert event.is_exception is False

    @pytest.mark.asyncio
    async def test_end_before_start_is_rejected(self, db_session, user_id, rule_event):
        with pytest.raises(ValueError, match="INVALID_DATE_RANGE"):
            await OccurrenceService(db_session).update_event(
                user_id,
                rule_event.id,
                UpdateEventRequest(end_time=datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)),
            )


class TestMissedEvents:
    @pytest.mark.asyncio
    async def test_mark_missed_only_flips_past_upcoming(self, db_session, user_id, sample_pet):
        past = _event(user_id, sample_pet.id, datetime(2024, 6, 1, 8, 0))
        done = _event(
            user_id, sample_pet.id, datetime(2024, 6, 1, 9, 0), status=EventStatus.COMPLETED
        )
        future = _event(user_id, sample_pet.id, datetime(2024, 6, 1, 18, 0))
        db_session.add_all([past, done, future])
        await db_session.commit()

        service = OccurrenceService(db_session)
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        assert await service.mark_missed_events(now=now) == 1
        assert await service.mark_missed_events(now=now) == 0

        missed = await service.get_missed_events(user_id)
        assert [event.id for event in missed] == [past.id]

    @pytest.mark.asyncio
    async def test_missed_events_are_newest_first(self, db_session, user_id, sample_pet):
        events = [
            _event(user_id, sample_pet.id, datetime(2024, 6, day, 8, 0), status=EventStatus.MISSED)
            for day in (1, 2, 3)
        ]
        db_session.add_all(events)
        await db_session.commit()

        missed = await OccurrenceService(db_session).get_missed_events(user_id, limit=2)
        assert [event.start_time.day for event in missed] == [3, 2]


class TestDeleteEvent:
    @pytest.mark.asyncio
    async def test_delete_removes_event_and_ledger(self, db_session, user_id, rule_event):
        await OccurrenceService(db_session).delete_event(user_id, rule_event.id)

        assert await db_session.get(Event, rule_event.id) is None
        assert await _ledger_statuses(db_session, rule_event.id) == []
