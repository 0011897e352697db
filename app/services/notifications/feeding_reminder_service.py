import uuid
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

from fastapi import Depends
from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.db.models import (
    FeedingNotification,
    FeedingSchedule,
    NotificationStatus,
    Pet,
)
from app.db.session import get_async_session
from app.db.statements import insert_if_absent
from app.services.notifications.device_registry import (
    DeviceRegistryService,
    DispatchOutcome,
)
from app.services.notifications.messages import render
from app.services.notifications.preferences import UserPreferenceCache
from app.utils.datetime_utils import (
    from_naive_utc,
    local_to_utc,
    parse_hh_mm,
    to_naive_utc,
    to_utc,
    utc_now,
    utc_to_local,
)
from app.utils.logging import get_logger

logger = get_logger()

CHANNEL_ID = "feeding-reminders"

# Indexed by date.weekday()
DAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def parse_days(days: Optional[str]) -> Set[str]:
    """``"Monday, wednesday"`` -> {"monday", "wednesday"}; unknown names are dropped"""
    names = {part.strip().lower() for part in (days or "").split(",")}
    return {name for name in names if name in DAY_NAMES}


def calculate_next_feeding_time(
    time: str,
    days: str,
    timezone: str = "UTC",
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Nearest instant strictly after ``now`` that falls on one of ``days`` at the
    wall-clock ``time`` in ``timezone``.

    Today is considered first, then the next seven days. Weekdays are judged
    in the schedule's timezone, not in UTC.

    Returns:
        Optional[datetime]: Aware UTC datetime, or None when ``days`` names no weekday
    """
    parse_hh_mm(time)
    wanted = parse_days(days)
    if not wanted:
        return None

    current = to_utc(now) if now else utc_now()
    today = utc_to_local(current, timezone).date()
    for offset in range(0, 8):
        day = today + timedelta(days=offset)
        if DAY_NAMES[day.weekday()] not in wanted:
            continue
        candidate = local_to_utc(day, time, timezone)
        if candidate > current:
            return candidate
    return None


class FeedingReminderService:
    """
    Rolling one-ahead feeding reminders.

    Each schedule keeps at most one pending ledger row. Sending it chains the
    next one; the catch-up scan recreates a missing row when chaining failed.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        devices: Optional[DeviceRegistryService] = None,
        preferences: Optional[UserPreferenceCache] = None,
        batch_limit: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        self.db = db_session
        self.devices = devices or DeviceRegistryService(db_session)
        self.preferences = preferences or UserPreferenceCache(db_session)
        self.batch_limit = batch_limit or settings.FEEDING_REMINDER_BATCH_LIMIT
        self.max_retries = (
            max_retries if max_retries is not None else settings.FEEDING_REMINDER_MAX_RETRIES
        )

    async def _require_schedule(
        self, user_id: uuid.UUID, schedule_id: uuid.UUID
    ) -> FeedingSchedule:
        schedule = await self.db.scalar(
            select(FeedingSchedule).where(
                and_(
                    FeedingSchedule.id == schedule_id,
                    FeedingSchedule.user_id == user_id,
                )
            )
        )
        if not schedule:
            raise ValueError("FEEDING_SCHEDULE_NOT_FOUND")
        return schedule

    async def _content(
        self, schedule: FeedingSchedule, pet: Pet
    ) -> Tuple[str, str, Dict[str, str]]:
        preferences = await self.preferences.get(schedule.user_id)
        title = render(
            "feeding_reminder.title", preferences.language, pet_name=pet.name
        )
        body = render(
            "feeding_reminder.body",
            preferences.language,
            pet_name=pet.name,
            amount=schedule.amount,
            food_type=schedule.food_type,
        )
        data = {
            "type": "feeding_reminder",
            "screen": "feeding",
            "scheduleId": str(schedule.id),
            "petId": str(schedule.pet_id),
        }
        return title, body, data

    async def _dispatch(self, schedule: FeedingSchedule, pet: Pet) -> DispatchOutcome:
        title, body, data = await self._content(schedule, pet)
        return await self.devices.send_to_user(
            schedule.user_id, title, body, data=data, channel_id=CHANNEL_ID
        )

    # Scheduling
    async def schedule_feeding_reminder(
        self,
        schedule: FeedingSchedule,
        now: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> int:
        """
        Ensure a pending reminder exists for the next feeding of ``schedule``.

        The next feeding is searched after ``after`` (defaults to ``now``).
        Nothing is scheduled when reminders are off, the reminder time is
        already past, or the user has no active device.

        Returns:
            int: 1 when a pending row was created, 0 otherwise
        """
        if not schedule.is_active or not schedule.reminders_enabled:
            return 0

        current = to_utc(now) if now else utc_now()
        reference = max(current, to_utc(after)) if after else current
        preferences = await self.preferences.get(schedule.user_id)

        next_feeding = calculate_next_feeding_time(
            schedule.time, schedule.days, preferences.timezone, now=reference
        )
        if next_feeding is None:
            logger.info(f"No upcoming feeding time found for schedule {schedule.id}")
            return 0

        trigger = next_feeding - timedelta(minutes=schedule.reminder_minutes_before)
        if trigger <= current:
            logger.debug(
                f"Reminder time {trigger.isoformat()} for schedule {schedule.id} is in the past"
            )
            return 0

        if not await self.devices.get_active_tokens(schedule.user_id):
            return 0

        created = await insert_if_absent(
            self.db,
            FeedingNotification,
            [
                {
                    "id": uuid.uuid4(),
                    "user_id": schedule.user_id,
                    "schedule_id": schedule.id,
                    "pet_id": schedule.pet_id,
                    "scheduled_for": to_naive_utc(trigger),
                    "status": NotificationStatus.PENDING,
                    "retry_count": 0,
                    "max_retries": self.max_retries,
                }
            ],
        )
        schedule.next_notification_time = to_naive_utc(trigger)
        await self.db.commit()

        if created:
            logger.info(
                f"Scheduled feeding reminder for schedule {schedule.id} at {trigger.isoformat()}"
            )
        return created

    async def cancel_feeding_reminders(self, schedule_id: uuid.UUID) -> int:
        result = await self.db.execute(
            update(FeedingNotification)
            .where(
                and_(
                    FeedingNotification.schedule_id == schedule_id,
                    FeedingNotification.status == NotificationStatus.PENDING,
                )
            )
            .values(status=NotificationStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(FeedingSchedule)
            .where(FeedingSchedule.id == schedule_id)
            .values(next_notification_time=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        cancelled = result.rowcount or 0
        logger.info(f"Cancelled {cancelled} feeding reminder(s) for schedule {schedule_id}")
        return cancelled

    async def update_reminder_settings(
        self,
        user_id: uuid.UUID,
        schedule_id: uuid.UUID,
        enabled: bool,
        minutes_before: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> FeedingSchedule:
        """Toggle reminders; enabling schedules the next one, disabling cancels"""
        schedule = await self._require_schedule(user_id, schedule_id)
        schedule.reminders_enabled = enabled
        if minutes_before is not None:
            schedule.reminder_minutes_before = minutes_before
        await self.db.commit()

        # Pending rows were computed with the old lead time
        await self.cancel_feeding_reminders(schedule.id)
        if enabled:
            await self.schedule_feeding_reminder(schedule, now=now)
        await self.db.refresh(schedule)
        return schedule

    async def mark_feeding_completed(
        self,
        user_id: uuid.UUID,
        schedule_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> FeedingSchedule:
        """Drop the pending reminder and move the chain past the fed slot"""
        schedule = await self._require_schedule(user_id, schedule_id)
        current = to_utc(now) if now else utc_now()

        pending = await self.db.scalar(
            select(func.max(FeedingNotification.scheduled_for)).where(
                and_(
                    FeedingNotification.schedule_id == schedule.id,
                    FeedingNotification.status == NotificationStatus.PENDING,
                )
            )
        )
        await self.cancel_feeding_reminders(schedule.id)

        schedule.last_notification_at = to_naive_utc(current)
        await self.db.commit()

        after = None
        if pending is not None:
            after = from_naive_utc(pending) + timedelta(
                minutes=schedule.reminder_minutes_before
            )
        await self.schedule_feeding_reminder(schedule, now=current, after=after)
        await self.db.refresh(schedule)
        logger.info(f"Feeding marked as completed for schedule {schedule.id}")
        return schedule

    async def send_feeding_reminder(
        self,
        user_id: uuid.UUID,
        schedule_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> int:
        """Push a reminder right away, outside the ledger; returns devices reached"""
        schedule = await self._require_schedule(user_id, schedule_id)
        pet = await self.db.get(Pet, schedule.pet_id)
        if not pet:
            raise ValueError("PET_NOT_FOUND")

        outcome = await self._dispatch(schedule, pet)
        schedule.last_notification_at = to_naive_utc(to_utc(now) if now else utc_now())
        await self.db.commit()

        logger.info(
            f"Feeding reminder sent for schedule {schedule.id}: {outcome.sent} notifications"
        )
        return outcome.sent

    async def get_schedule_notification_counts(
        self, user_id: uuid.UUID, schedule_id: uuid.UUID
    ) -> Dict[str, int]:
        await self._require_schedule(user_id, schedule_id)
        result = await self.db.execute(
            select(FeedingNotification.status, func.count(FeedingNotification.id))
            .where(FeedingNotification.schedule_id == schedule_id)
            .group_by(FeedingNotification.status)
        )
        counts = {status.value: 0 for status in NotificationStatus}
        for status, count in result.all():
            counts[status.value] = count
        return counts

    # Checker
    async def _set_status(
        self, notification_id: uuid.UUID, **values
    ) -> None:
        await self.db.execute(
            update(FeedingNotification)
            .where(FeedingNotification.id == notification_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _process_notification(
        self, notification: FeedingNotification, current: datetime
    ) -> str:
        """Handle one due row; returns the counter it contributes to"""
        schedule = await self.db.get(FeedingSchedule, notification.schedule_id)
        pet = await self.db.get(Pet, schedule.pet_id) if schedule else None
        if (
            schedule is None
            or pet is None
            or not schedule.is_active
            or not schedule.reminders_enabled
        ):
            await self._set_status(notification.id, status=NotificationStatus.CANCELLED)
            return "cancelled"

        outcome = await self._dispatch(schedule, pet)

        if outcome.delivered:
            message_ids = outcome.message_ids
            await self._set_status(
                notification.id,
                status=NotificationStatus.SENT,
                sent_at=to_naive_utc(current),
                provider_message_id=message_ids[0] if message_ids else None,
                error_message=None,
            )
            schedule.last_notification_at = to_naive_utc(current)
            await self.db.commit()

            fed_at = from_naive_utc(notification.scheduled_for) + timedelta(
                minutes=schedule.reminder_minutes_before
            )
            try:
                await self.schedule_feeding_reminder(schedule, now=current, after=fed_at)
            except Exception as e:
                # The catch-up scan recreates the chain on a later tick
                await self.db.rollback()
                logger.exception(
                    f"Failed to chain next reminder for schedule {schedule.id}: {str(e)}"
                )
            return "sent"

        error = outcome.last_error or "No active devices"
        if notification.retry_count < notification.max_retries:
            await self._set_status(
                notification.id,
                retry_count=notification.retry_count + 1,
                error_message=error,
            )
            return "retried"

        await self._set_status(
            notification.id,
            status=NotificationStatus.FAILED,
            error_message=f"Max retries exceeded: {error}",
        )
        return "failed"

    async def _due_pages(self, current: datetime) -> AsyncIterator[List[uuid.UUID]]:
        cursor: Optional[Tuple[datetime, uuid.UUID]] = None
        upper = to_naive_utc(current)
        while True:
            conditions = [
                FeedingNotification.status == NotificationStatus.PENDING,
                FeedingNotification.scheduled_for <= upper,
            ]
            if cursor is not None:
                conditions.append(
                    or_(
                        FeedingNotification.scheduled_for > cursor[0],
                        and_(
                            FeedingNotification.scheduled_for == cursor[0],
                            FeedingNotification.id > cursor[1],
                        ),
                    )
                )
            result = await self.db.execute(
                select(FeedingNotification.id, FeedingNotification.scheduled_for)
                .where(and_(*conditions))
                .order_by(FeedingNotification.scheduled_for, FeedingNotification.id)
                .limit(self.batch_limit)
            )
            page = result.all()
            if not page:
                return
            cursor = (page[-1].scheduled_for, page[-1].id)
            yield [row.id for row in page]
            if len(page) < self.batch_limit:
                return

    async def process_due_reminders(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Send every pending reminder whose time has come"""
        current = to_utc(now) if now else utc_now()
        counters = {"checked": 0, "sent": 0, "failed": 0, "retried": 0, "cancelled": 0}

        async for notification_ids in self._due_pages(current):
            for notification_id in notification_ids:
                counters["checked"] += 1
                try:
                    notification = await self.db.get(
                        FeedingNotification, notification_id, populate_existing=True
                    )
                    if notification is None:
                        continue
                    counters[await self._process_notification(notification, current)] += 1
                except Exception as e:
                    await self.db.rollback()
                    logger.exception(
                        f"Error processing feeding notification {notification_id}: {str(e)}"
                    )
                    await self._set_status(
                        notification_id,
                        status=NotificationStatus.FAILED,
                        error_message=str(e),
                    )
                    counters["failed"] += 1

        return counters

    async def catch_up_missing_reminders(
        self, now: Optional[datetime] = None
    ) -> int:
        """Recreate the pending row for reminder-enabled schedules that lost it"""
        current = to_utc(now) if now else utc_now()
        has_pending = exists().where(
            and_(
                FeedingNotification.schedule_id == FeedingSchedule.id,
                FeedingNotification.status == NotificationStatus.PENDING,
            )
        )
        result = await self.db.execute(
            select(FeedingSchedule.id).where(
                and_(
                    FeedingSchedule.is_active.is_(True),
                    FeedingSchedule.reminders_enabled.is_(True),
                    ~has_pending,
                )
            )
        )
        schedule_ids = result.scalars().all()

        recreated = 0
        for schedule_id in schedule_ids:
            try:
                schedule = await self.db.get(FeedingSchedule, schedule_id)
                if schedule is None:
                    continue
                recreated += await self.schedule_feeding_reminder(schedule, now=current)
            except Exception as e:
                await self.db.rollback()
                logger.exception(
                    f"Catch-up scheduling failed for schedule {schedule_id}: {str(e)}"
                )

        if recreated:
            logger.info(f"Catch-up recreated {recreated} feeding reminder(s)")
        return recreated

    async def check_feeding_reminders(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """One checker tick: due reminders first, then the catch-up scan"""
        current = to_utc(now) if now else utc_now()
        counters = await self.process_due_reminders(now=current)
        counters["rescheduled"] = await self.catch_up_missing_reminders(now=current)
        return counters


def get_feeding_reminder_service(
    db: AsyncSession = Depends(get_async_session),
) -> FeedingReminderService:
    """Dependency to get FeedingReminderService instance"""
    return FeedingReminderService(db)
