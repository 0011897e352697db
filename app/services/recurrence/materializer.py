import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Any

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.db.models import (
    Event,
    EventNotification,
    EventStatus,
    RecurrenceRule,
    UserSettings,
)
from app.db.statements import insert_if_absent
from app.services.recurrence.expander import expand
from app.utils.datetime_utils import to_naive_utc, to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()

# Copied from the rule onto each occurrence at generation time and on rule updates
TEMPLATE_FIELDS = (
    "title",
    "description",
    "type",
    "location",
    "notes",
    "reminder",
    "reminder_preset",
    "vaccine_name",
    "vaccine_manufacturer",
    "batch_number",
    "medication_name",
    "dosage",
)


class EventMaterializer:
    """Turns recurrence rules into persisted Event rows, idempotently."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _default_event_time(self, user_id: uuid.UUID) -> str:
        result = await self.db.execute(
            select(UserSettings.default_event_time).where(
                UserSettings.user_id == user_id
            )
        )
        return result.scalar_one_or_none() or settings.DEFAULT_EVENT_TIME

    def _build_rows(
        self, rule: RecurrenceRule, instants: List[datetime]
    ) -> List[Dict[str, Any]]:
        template = {field: getattr(rule, field) for field in TEMPLATE_FIELDS}
        duration = rule.event_duration_minutes
        rows = []
        for series_index, instant in enumerate(instants):
            start_time = to_naive_utc(instant)
            rows.append(
                {
                    "id": uuid.uuid4(),
                    "user_id": rule.user_id,
                    "pet_id": rule.pet_id,
                    "recurrence_rule_id": rule.id,
                    **template,
                    "start_time": start_time,
                    "end_time": (
                        start_time + timedelta(minutes=duration) if duration else None
                    ),
                    "status": EventStatus.UPCOMING,
                    "series_index": series_index,
                    "is_exception": False,
                    "scheduled_notification_ids": [],
                }
            )
        return rows

    async def materialize(
        self, rule: RecurrenceRule, now: Optional[datetime] = None
    ) -> int:
        """
        Create the occurrences ``rule`` produces within its horizon.

        Existing (rule, start_time) pairs are left untouched, so repeated or
        concurrent calls only ever add missing occurrences.

        Returns:
            int: Number of occurrences newly created
        """
        if not rule.is_active:
            return 0

        current = to_utc(now) if now else utc_now()
        default_time = await self._default_event_time(rule.user_id)
        instants = expand(rule, default_daily_time=default_time, now=current)

        created = await insert_if_absent(
            self.db, Event, self._build_rows(rule, instants)
        )

        rule.last_generated_date = to_naive_utc(current)
        await self.db.commit()

        logger.info(
            f"Materialized rule {rule.id}: {len(instants)} instants, {created} new events"
        )
        return created

    async def delete_future_events(
        self, rule: RecurrenceRule, now: Optional[datetime] = None
    ) -> int:
        """Delete future, non-exception occurrences of ``rule`` (no commit)."""
        current = to_naive_utc(now or utc_now())
        future_ids = select(Event.id).where(
            and_(
                Event.recurrence_rule_id == rule.id,
                Event.start_time >= current,
                Event.is_exception.is_(False),
            )
        )
        await self.db.execute(
            delete(EventNotification)
            .where(EventNotification.event_id.in_(future_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            delete(Event)
            .where(Event.id.in_(future_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def regenerate(
        self, rule: RecurrenceRule, now: Optional[datetime] = None
    ) -> Tuple[int, int]:
        """
        Drop future, non-exception occurrences and materialize again.

        Past occurrences and hand-edited exceptions survive, so a regeneration
        after pattern edits only rewrites what the rule still owns.

        Returns:
            Tuple[int, int]: (deleted, created)
        """
        current = to_utc(now) if now else utc_now()
        deleted = await self.delete_future_events(rule, current)
        await self.db.commit()

        created = await self.materialize(rule, now=current)
        logger.info(f"Regenerated rule {rule.id}: {deleted} deleted, {created} created")
        return deleted, created

    async def generate_for_all_active_rules(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Materialize every active rule; one failing rule doesn't stop the rest."""
        result = await self.db.execute(
            select(RecurrenceRule.id)
            .where(RecurrenceRule.is_active.is_(True))
            .order_by(RecurrenceRule.created_at, RecurrenceRule.id)
        )
        # Ids only: a rollback after a failing rule expires every loaded instance
        rule_ids = result.scalars().all()

        rules_processed = 0
        events_created = 0
        failed_rules = 0

        for rule_id in rule_ids:
            try:
                rule = await self.db.get(RecurrenceRule, rule_id)
                if rule is None:
                    continue
                events_created += await self.materialize(rule, now=now)
                rules_processed += 1
            except Exception as e:
                failed_rules += 1
                await self.db.rollback()
                logger.exception(
                    f"Error generating events for rule {rule_id}: {str(e)}"
                )

        return {
            "rules_processed": rules_processed,
            "events_created": events_created,
            "failed_rules": failed_rules,
        }
