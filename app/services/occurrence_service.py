import uuid
from datetime import datetime
from typing import Optional, Sequence

from fastapi import Depends
from sqlalchemy import and_, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Event, EventNotification, EventStatus
from app.db.session import get_async_session
from app.schemas.recurrence_schemas import UpdateEventRequest
from app.services.notifications.event_reminder_service import cancel_event_reminders
from app.utils.datetime_utils import to_naive_utc, to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()

# Explicit transitions; anything may be reset back to UPCOMING
ALLOWED_TRANSITIONS = {
    EventStatus.UPCOMING: {EventStatus.COMPLETED, EventStatus.CANCELLED},
}


class OccurrenceService:
    """Status lifecycle and manual edits of single occurrences"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_event(
        self, user_id: uuid.UUID, event_id: uuid.UUID
    ) -> Optional[Event]:
        result = await self.db.execute(
            select(Event).where(and_(Event.id == event_id, Event.user_id == user_id))
        )
        return result.scalar_one_or_none()

    async def _require_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> Event:
        event = await self.get_event(user_id, event_id)
        if not event:
            raise ValueError("EVENT_NOT_FOUND")
        return event

    async def change_status(
        self, user_id: uuid.UUID, event_id: uuid.UUID, status: EventStatus
    ) -> Event:
        """
        Move an occurrence to ``status``.

        Only upcoming occurrences can be completed or cancelled; any occurrence
        can be reset to upcoming. Cancelling also cancels its unsent reminders.
        """
        event = await self._require_event(user_id, event_id)

        if status == event.status:
            return event
        if status != EventStatus.UPCOMING and status not in ALLOWED_TRANSITIONS.get(
            event.status, set()
        ):
            raise ValueError(
                f"INVALID_STATUS_TRANSITION: {event.status.value} -> {status.value}"
            )

        event.status = status
        if status == EventStatus.CANCELLED:
            await cancel_event_reminders(self.db, event.id)
        await self.db.commit()
        await self.db.refresh(event)

        logger.info(f"Event {event.id} moved to {status.value}")
        return event

    async def complete_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> Event:
        return await self.change_status(user_id, event_id, EventStatus.COMPLETED)

    async def cancel_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> Event:
        return await self.change_status(user_id, event_id, EventStatus.CANCELLED)

    async def reset_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> Event:
        return await self.change_status(user_id, event_id, EventStatus.UPCOMING)

    async def update_event(
        self, user_id: uuid.UUID, event_id: uuid.UUID, data: UpdateEventRequest
    ) -> Event:
        """Apply a manual edit; a rule-owned occurrence becomes an exception"""
        event = await self._require_event(user_id, event_id)

        changes = {field: getattr(data, field) for field in data.model_fields_set}
        for field in ("start_time", "end_time"):
            if changes.get(field) is not None:
                changes[field] = to_naive_utc(changes[field])
        for field, value in changes.items():
            if value is None and field not in ("description", "location", "notes", "end_time"):
                continue
            setattr(event, field, value)

        if event.end_time is not None and event.end_time < event.start_time:
            raise ValueError("INVALID_DATE_RANGE")

        if changes and event.recurrence_rule_id is not None:
            event.is_exception = True
        if "start_time" in changes or changes.get("reminder") is False:
            await cancel_event_reminders(self.db, event.id)

        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def delete_event(self, user_id: uuid.UUID, event_id: uuid.UUID) -> None:
        event = await self._require_event(user_id, event_id)
        await self.db.execute(
            delete(EventNotification)
            .where(EventNotification.event_id == event.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(event)
        await self.db.commit()

    async def mark_missed_events(self, now: Optional[datetime] = None) -> int:
        """Flip every upcoming occurrence whose start time has passed to missed"""
        current = to_naive_utc(to_utc(now) if now else utc_now())
        result = await self.db.execute(
            update(Event)
            .where(
                and_(Event.status == EventStatus.UPCOMING, Event.start_time < current)
            )
            .values(status=EventStatus.MISSED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def get_missed_events(
        self, user_id: uuid.UUID, limit: int = 50
    ) -> Sequence[Event]:
        result = await self.db.execute(
            select(Event)
            .where(and_(Event.user_id == user_id, Event.status == EventStatus.MISSED))
            .order_by(Event.start_time.desc())
            .limit(limit)
        )
        return result.scalars().all()


def get_occurrence_service(
    db: AsyncSession = Depends(get_async_session),
) -> OccurrenceService:
    """Dependency to get OccurrenceService instance"""
    return OccurrenceService(db)
