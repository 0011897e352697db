import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.db.models import (
    Event,
    EventNotification,
    EventStatus,
    EventType,
    NotificationStatus,
    Pet,
    ReminderPreset,
)
from app.db.statements import insert_if_absent
from app.services.notifications.device_registry import DeviceRegistryService
from app.services.notifications.messages import (
    format_short_datetime,
    render,
    render_count,
)
from app.services.notifications.preferences import UserPreferenceCache, UserPreferences
from app.utils.datetime_utils import (
    from_naive_utc,
    to_naive_utc,
    to_utc,
    truncate_to_minute,
    utc_now,
    utc_to_local,
)
from app.utils.logging import get_logger

logger = get_logger()

CHANNEL_ID = "event-reminders"
SCAN_BATCH_SIZE = 100

# Minutes before the event start
REMINDER_PRESETS: Dict[ReminderPreset, List[int]] = {
    ReminderPreset.STANDARD: [1440, 120, 60, 15],
    ReminderPreset.COMPACT: [60, 15],
    ReminderPreset.MINIMAL: [15],
}

EVENT_TYPE_EMOJIS = {
    EventType.FEEDING: "🍽️",
    EventType.EXERCISE: "🏃",
    EventType.GROOMING: "✂️",
    EventType.PLAY: "🎾",
    EventType.TRAINING: "🎓",
    EventType.VET_VISIT: "🏥",
    EventType.WALK: "🚶",
    EventType.BATH: "🛁",
    EventType.VACCINATION: "💉",
    EventType.MEDICATION: "💊",
    EventType.OTHER: "📅",
}


def reminder_offsets(preset: Optional[ReminderPreset]) -> List[int]:
    return list(REMINDER_PRESETS.get(preset, REMINDER_PRESETS[ReminderPreset.STANDARD]))


def notification_key(event_id: uuid.UUID, minutes_before: int) -> str:
    return f"reminder-{event_id}-{minutes_before}"


def is_trigger_due(trigger: datetime, now: datetime, tick: timedelta) -> bool:
    """
    A trigger belongs to exactly one tick: the one whose window
    ``[now, now + tick)`` contains it.
    """
    return now <= trigger < now + tick


def build_reminder_content(
    event: Event,
    minutes_before: int,
    preferences: UserPreferences,
    pet_name: Optional[str] = None,
) -> Tuple[str, str]:
    """Localized (title, body) for one reminder of ``event``"""
    language = preferences.language
    emoji = EVENT_TYPE_EMOJIS.get(event.type, EVENT_TYPE_EMOJIS[EventType.OTHER])
    if pet_name:
        title = render(
            "event_reminder.title_with_pet",
            language,
            emoji=emoji,
            pet_name=pet_name,
            event_title=event.title,
        )
    else:
        title = render(
            "event_reminder.title", language, emoji=emoji, event_title=event.title
        )

    local_start = utc_to_local(event.start_time, preferences.timezone)
    when = format_short_datetime(local_start, language)
    if minutes_before >= 1440:
        body = render_count(
            "event_reminder.body.days", minutes_before // 1440, language, when=when
        )
    elif minutes_before >= 60:
        body = render_count(
            "event_reminder.body.hours", minutes_before // 60, language, when=when
        )
    elif minutes_before > 0:
        body = render_count(
            "event_reminder.body.minutes", minutes_before, language, when=when
        )
    else:
        body = render("event_reminder.body.now", language, when=when)
    return title, body


async def cancel_event_reminders(db: AsyncSession, event_id: uuid.UUID) -> int:
    """Cancel unsent ledger rows of an occurrence and clear its ids (no commit)"""
    result = await db.execute(
        update(EventNotification)
        .where(
            and_(
                EventNotification.event_id == event_id,
                EventNotification.status.in_(
                    [NotificationStatus.PENDING, NotificationStatus.FAILED]
                ),
            )
        )
        .values(status=NotificationStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(scheduled_notification_ids=[])
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


class EventReminderService:
    """
    Sends the preset reminders of upcoming occurrences.

    Runs on a fixed tick; each tick sends the triggers falling inside its own
    window and records them in the ``event_notifications`` ledger, whose
    ``(event_id, scheduled_for)`` key keeps a trigger from being sent twice.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        devices: Optional[DeviceRegistryService] = None,
        preferences: Optional[UserPreferenceCache] = None,
        tick_minutes: Optional[int] = None,
        window_days: Optional[int] = None,
    ):
        self.db = db_session
        self.devices = devices or DeviceRegistryService(db_session)
        self.preferences = preferences or UserPreferenceCache(db_session)
        self.tick = timedelta(minutes=tick_minutes or settings.REMINDER_TICK_MINUTES)
        self.window = timedelta(days=window_days or settings.EVENT_REMINDER_WINDOW_DAYS)

    def due_triggers(
        self, event: Event, now: datetime
    ) -> List[Tuple[int, datetime]]:
        """(minutes_before, trigger) pairs of ``event`` due on the tick at ``now``"""
        start = from_naive_utc(event.start_time)
        due = []
        for minutes in reminder_offsets(event.reminder_preset):
            trigger = start - timedelta(minutes=minutes)
            if is_trigger_due(trigger, now, self.tick):
                due.append((minutes, trigger))
        return due

    async def _sent_triggers(
        self, event_id: uuid.UUID, triggers: List[datetime]
    ) -> set:
        result = await self.db.execute(
            select(EventNotification.scheduled_for).where(
                and_(
                    EventNotification.event_id == event_id,
                    EventNotification.status == NotificationStatus.SENT,
                    EventNotification.scheduled_for.in_(
                        [to_naive_utc(t) for t in triggers]
                    ),
                )
            )
        )
        return set(result.scalars().all())

    async def _record(
        self,
        event: Event,
        key: str,
        trigger: datetime,
        token: Optional[str],
        status: NotificationStatus,
        sent_at: Optional[datetime] = None,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        scheduled_for = to_naive_utc(trigger)
        values = {
            "status": status,
            "expo_push_token": token,
            "sent_at": sent_at,
            "provider_message_id": message_id,
            "error_message": error,
        }
        inserted = await insert_if_absent(
            self.db,
            EventNotification,
            [
                {
                    "id": uuid.uuid4(),
                    "user_id": event.user_id,
                    "event_id": event.id,
                    "notification_key": key,
                    "scheduled_for": scheduled_for,
                    "retry_count": 0,
                    **values,
                }
            ],
        )
        if not inserted:
            # A failed or cancelled row for this trigger already exists
            await self.db.execute(
                update(EventNotification)
                .where(
                    and_(
                        EventNotification.event_id == event.id,
                        EventNotification.scheduled_for == scheduled_for,
                        EventNotification.status != NotificationStatus.SENT,
                    )
                )
                .values(retry_count=EventNotification.retry_count + 1, **values)
                .execution_options(synchronize_session=False)
            )

    async def schedule_reminders(
        self, event: Event, now: Optional[datetime] = None
    ) -> int:
        """
        Dispatch the reminders of ``event`` that are due on this tick.

        Triggers already in the past are skipped and future ones are left to
        later ticks. A user without active devices gets nothing; that is not an
        error.

        Returns:
            int: Number of reminders dispatched to at least one device
        """
        if not event.reminder or event.status != EventStatus.UPCOMING:
            return 0

        current = truncate_to_minute(to_utc(now) if now else utc_now())
        due = self.due_triggers(event, current)
        if not due:
            return 0

        tokens = await self.devices.get_active_tokens(event.user_id)
        if not tokens:
            logger.debug(f"No active devices for user {event.user_id}; skipping event {event.id}")
            return 0

        preferences = await self.preferences.get(event.user_id)
        if not preferences.notifications_enabled:
            return 0

        already_sent = await self._sent_triggers(event.id, [t for _, t in due])
        pet_name = await self.db.scalar(select(Pet.name).where(Pet.id == event.pet_id))
        notification_ids = list(event.scheduled_notification_ids or [])
        scheduled = 0

        for minutes, trigger in due:
            if to_naive_utc(trigger) in already_sent:
                continue
            if not tokens:
                break

            key = notification_key(event.id, minutes)
            title, body = build_reminder_content(event, minutes, preferences, pet_name)
            outcome = await self.devices.send_to_user(
                event.user_id,
                title,
                body,
                data={
                    "eventId": str(event.id),
                    "screen": "event",
                    "eventType": event.type.value,
                    "notificationId": key,
                },
                channel_id=CHANNEL_ID,
                tokens=tokens,
            )
            invalid = {r.token for r in outcome.results if r.should_deactivate_token}
            tokens = [token for token in tokens if token not in invalid]

            if outcome.delivered:
                delivered = [r for r in outcome.results if r.delivered]
                await self._record(
                    event,
                    key,
                    trigger,
                    token=delivered[0].token,
                    status=NotificationStatus.SENT,
                    sent_at=to_naive_utc(current),
                    message_id=delivered[0].message_id,
                )
                if key not in notification_ids:
                    notification_ids.append(key)
                scheduled += 1
            else:
                await self._record(
                    event,
                    key,
                    trigger,
                    token=None,
                    status=NotificationStatus.FAILED,
                    error=outcome.last_error,
                )
                logger.warning(
                    f"Reminder {key} not delivered: {outcome.last_error}"
                )

        event.scheduled_notification_ids = notification_ids
        await self.db.commit()
        return scheduled

    async def cancel_reminders(self, event: Event) -> int:
        cancelled = await cancel_event_reminders(self.db, event.id)
        await self.db.commit()
        await self.db.refresh(event)
        return cancelled

    async def schedule_all_upcoming_reminders(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """
        Walk every upcoming, reminder-enabled occurrence starting within the
        reminder window and dispatch its due triggers. Reads in keyset pages;
        a failing occurrence is logged and skipped.
        """
        current = truncate_to_minute(to_utc(now) if now else utc_now())
        lower = to_naive_utc(current)
        upper = to_naive_utc(current + self.window)

        events_processed = 0
        reminders_sent = 0
        failed_events = 0
        cursor: Optional[Tuple[datetime, uuid.UUID]] = None

        while True:
            conditions = [
                Event.status == EventStatus.UPCOMING,
                Event.reminder.is_(True),
                Event.start_time > lower,
                Event.start_time <= upper,
            ]
            if cursor is not None:
                conditions.append(
                    or_(
                        Event.start_time > cursor[0],
                        and_(Event.start_time == cursor[0], Event.id > cursor[1]),
                    )
                )
            result = await self.db.execute(
                select(Event.id, Event.start_time)
                .where(and_(*conditions))
                .order_by(Event.start_time, Event.id)
                .limit(SCAN_BATCH_SIZE)
            )
            page = result.all()
            if not page:
                break
            cursor = (page[-1].start_time, page[-1].id)

            for event_id, _ in page:
                try:
                    event = await self.db.get(Event, event_id)
                    if event is None:
                        continue
                    reminders_sent += await self.schedule_reminders(event, now=current)
                    events_processed += 1
                except Exception as e:
                    failed_events += 1
                    await self.db.rollback()
                    logger.exception(
                        f"Error scheduling reminders for event {event_id}: {str(e)}"
                    )

            if len(page) < SCAN_BATCH_SIZE:
                break

        return {
            "events_processed": events_processed,
            "reminders_sent": reminders_sent,
            "failed_events": failed_events,
        }
