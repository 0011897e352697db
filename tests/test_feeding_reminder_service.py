from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.db.models import FeedingNotification, NotificationStatus
from app.services.notifications.device_registry import DeviceRegistryService
from app.services.notifications.feeding_reminder_service import (
    FeedingReminderService,
    calculate_next_feeding_time,
    parse_days,
)
from app.services.notifications.push_gateway import PushDeliveryStatus

UTC = timezone.utc
# 2024-01-09 is a Tuesday
TUESDAY = datetime(2024, 1, 9, 10, 0, tzinfo=UTC)


def _service(db_session, gateway) -> FeedingReminderService:
    return FeedingReminderService(
        db_session,
        devices=DeviceRegistryService(db_session, gateway=gateway),
        max_retries=3,
    )


async def _rows(db_session, schedule_id, status=None):
    query = select(FeedingNotification).where(
        FeedingNotification.schedule_id == schedule_id
    )
    if status is not None:
        query = query.where(FeedingNotification.status == status)
    result = await db_session.execute(query.order_by(FeedingNotification.scheduled_for))
    return result.scalars().all()


async def _pending_row(db_session, schedule, scheduled_for, retry_count=0):
    row = FeedingNotification(
        user_id=schedule.user_id,
        schedule_id=schedule.id,
        pet_id=schedule.pet_id,
        scheduled_for=scheduled_for,
        status=NotificationStatus.PENDING,
        retry_count=retry_count,
        max_retries=3,
    )
    db_session.add(row)
    await db_session.commit()
    return row


class TestNextFeedingTime:
    def test_tuesday_rolls_to_wednesday(self):
        assert calculate_next_feeding_time(
            "08:00", "wednesday", "UTC", now=TUESDAY
        ) == datetime(2024, 1, 10, 8, 0, tzinfo=UTC)

    def test_later_today(self):
        assert calculate_next_feeding_time(
            "18:00", "tuesday", "UTC", now=TUESDAY
        ) == datetime(2024, 1, 9, 18, 0, tzinfo=UTC)

    def test_exact_slot_is_not_next(self):
        now = datetime(2024, 1, 9, 8, 0, tzinfo=UTC)
        assert calculate_next_feeding_time(
            "08:00", "tuesday", "UTC", now=now
        ) == datetime(2024, 1, 16, 8, 0, tzinfo=UTC)

    def test_weekday_is_judged_in_local_time(self):
        # Sunday 21:00 UTC is already Monday 06:00 in Tokyo
        now = datetime(2024, 1, 7, 21, 0, tzinfo=UTC)
        assert calculate_next_feeding_time(
            "07:00", "monday", "Asia/Tokyo", now=now
        ) == datetime(2024, 1, 7, 22, 0, tzinfo=UTC)

    def test_next_feeding_across_new_york_spring_forward(self):
        # Saturday 08:00 EST; Sunday 2024-03-10 is already on EDT
        now = datetime(2024, 3, 9, 13, 0, tzinfo=UTC)
        assert calculate_next_feeding_time(
            "07:00", "sunday", "America/New_York", now=now
        ) == datetime(2024, 3, 10, 11, 0, tzinfo=UTC)
        # A feeding time inside the skipped hour moves forward, never back
        assert calculate_next_feeding_time(
            "02:30", "sunday", "America/New_York", now=now
        ) == datetime(2024, 3, 10, 7, 30, tzinfo=UTC)

    def test_no_valid_days(self):
        assert calculate_next_feeding_time("08:00", "someday", "UTC", now=TUESDAY) is None

    def test_parse_days_normalizes(self):
        assert parse_days(" Monday,WEDNESDAY ,funday") == {"monday", "wednesday"}


class TestScheduleFeedingReminder:
    @pytest.mark.asyncio
    async def test_creates_single_pending_row(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)

        assert await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY) == 1
        assert await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY) == 0

        rows = await _rows(db_session, sample_schedule.id)
        assert len(rows) == 1
        assert rows[0].scheduled_for == datetime(2024, 1, 10, 7, 45)
        assert sample_schedule.next_notification_time == datetime(2024, 1, 10, 7, 45)

    @pytest.mark.asyncio
    async def test_without_devices_nothing_is_scheduled(
        self, db_session, sample_schedule, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        assert await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY) == 0

    @pytest.mark.asyncio
    async def test_disabled_reminders(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        sample_schedule.reminders_enabled = False
        await db_session.commit()
        service = _service(db_session, fake_gateway)
        assert await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY) == 0

    @pytest.mark.asyncio
    async def test_update_settings_disable_cancels_pending(
        self, db_session, user_id, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY)

        schedule = await service.update_reminder_settings(
            user_id, sample_schedule.id, enabled=False, now=TUESDAY
        )

        assert schedule.reminders_enabled is False
        assert schedule.next_notification_time is None
        cancelled = await _rows(db_session, sample_schedule.id, NotificationStatus.CANCELLED)
        assert len(cancelled) == 1

    @pytest.mark.asyncio
    async def test_update_settings_reschedules_with_new_lead_time(
        self, db_session, user_id, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY)

        await service.update_reminder_settings(
            user_id, sample_schedule.id, enabled=True, minutes_before=30, now=TUESDAY
        )

        pending = await _rows(db_session, sample_schedule.id, NotificationStatus.PENDING)
        assert [row.scheduled_for for row in pending] == [datetime(2024, 1, 10, 7, 30)]

    @pytest.mark.asyncio
    async def test_unknown_schedule(self, db_session, user_id, sample_schedule, fake_gateway):
        service = _service(db_session, fake_gateway)
        with pytest.raises(ValueError, match="FEEDING_SCHEDULE_NOT_FOUND"):
            await service.update_reminder_settings(
                user_id, sample_schedule.pet_id, enabled=True
            )


class TestProcessDueReminders:
    @pytest.mark.asyncio
    async def test_sends_and_chains_next(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        await _pending_row(db_session, sample_schedule, datetime(2024, 1, 10, 7, 45))

        counters = await service.process_due_reminders(
            now=datetime(2024, 1, 10, 7, 46, tzinfo=UTC)
        )

        assert counters["sent"] == 1
        assert fake_gateway.sent[0].channel_id == "feeding-reminders"
        assert fake_gateway.sent[0].data["scheduleId"] == str(sample_schedule.id)
        sent = await _rows(db_session, sample_schedule.id, NotificationStatus.SENT)
        pending = await _rows(db_session, sample_schedule.id, NotificationStatus.PENDING)
        assert len(sent) == 1
        # Friday is the next feeding day after Wednesday
        assert [row.scheduled_for for row in pending] == [datetime(2024, 1, 12, 7, 45)]

    @pytest.mark.asyncio
    async def test_not_due_yet(self, db_session, sample_schedule, sample_device, fake_gateway):
        service = _service(db_session, fake_gateway)
        await _pending_row(db_session, sample_schedule, datetime(2024, 1, 10, 7, 45))

        counters = await service.process_due_reminders(now=TUESDAY)
        assert counters["checked"] == 0
        assert fake_gateway.sent == []

    @pytest.mark.asyncio
    async def test_retries_then_fails(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        fake_gateway.outcomes[sample_device.expo_push_token] = [
            PushDeliveryStatus.TRANSIENT_FAILURE
        ] * 4
        service = _service(db_session, fake_gateway)
        row = await _pending_row(db_session, sample_schedule, datetime(2024, 1, 10, 7, 45))
        now = datetime(2024, 1, 10, 7, 46, tzinfo=UTC)

        for expected_retry in (1, 2, 3):
            counters = await service.process_due_reminders(now=now)
            assert counters["retried"] == 1
            await db_session.refresh(row)
            assert row.retry_count == expected_retry
            assert row.status == NotificationStatus.PENDING

        counters = await service.process_due_reminders(now=now)
        assert counters["failed"] == 1
        await db_session.refresh(row)
        assert row.status == NotificationStatus.FAILED
        assert row.error_message.startswith("Max retries exceeded")

    @pytest.mark.asyncio
    async def test_disabled_schedule_cancels_row(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        sample_schedule.reminders_enabled = False
        await db_session.commit()
        service = _service(db_session, fake_gateway)
        row = await _pending_row(db_session, sample_schedule, datetime(2024, 1, 10, 7, 45))

        counters = await service.process_due_reminders(
            now=datetime(2024, 1, 10, 7, 46, tzinfo=UTC)
        )

        assert counters["cancelled"] == 1
        await db_session.refresh(row)
        assert row.status == NotificationStatus.CANCELLED
        assert fake_gateway.sent == []


class TestCatchUpAndCompletion:
    @pytest.mark.asyncio
    async def test_catch_up_recreates_missing_pending_row(
        self, db_session, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)

        counters = await service.check_feeding_reminders(now=TUESDAY)

        assert counters["rescheduled"] == 1
        pending = await _rows(db_session, sample_schedule.id, NotificationStatus.PENDING)
        assert len(pending) == 1
        # A second tick finds the row and leaves it alone
        counters = await service.check_feeding_reminders(now=TUESDAY)
        assert counters["rescheduled"] == 0

    @pytest.mark.asyncio
    async def test_mark_completed_moves_past_fed_slot(
        self, db_session, user_id, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY)

        # Fed early on Wednesday, before the 07:45 reminder fired
        now = datetime(2024, 1, 10, 7, 0, tzinfo=UTC)
        schedule = await service.mark_feeding_completed(user_id, sample_schedule.id, now=now)

        assert schedule.last_notification_at == datetime(2024, 1, 10, 7, 0)
        pending = await _rows(db_session, sample_schedule.id, NotificationStatus.PENDING)
        assert [row.scheduled_for for row in pending] == [datetime(2024, 1, 12, 7, 45)]

    @pytest.mark.asyncio
    async def test_notification_counts(
        self, db_session, user_id, sample_schedule, sample_device, fake_gateway
    ):
        service = _service(db_session, fake_gateway)
        await service.schedule_feeding_reminder(sample_schedule, now=TUESDAY)

        counts = await service.get_schedule_notification_counts(user_id, sample_schedule.id)
        assert counts == {"pending": 1, "sent": 0, "failed": 0, "cancelled": 0}

    @pytest.mark.asyncio
    async def test_send_now(self, db_session, user_id, sample_schedule, sample_device, fake_gateway):
        service = _service(db_session, fake_gateway)
        assert await service.send_feeding_reminder(user_id, sample_schedule.id, now=TUESDAY) == 1
        assert fake_gateway.sent[0].title == "🍽️ Feeding time for Luna"
