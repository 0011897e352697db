import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import (
    Event,
    EventNotification,
    EventStatus,
    Pet,
    RecurrenceExclusion,
    RecurrenceRule,
)
from app.db.session import get_async_session
from app.db.statements import insert_if_absent
from app.schemas.recurrence_schemas import (
    CreateRecurrenceRuleRequest,
    RecurrenceRuleListQueryParams,
    UpdateRecurrenceRuleRequest,
)
from app.services.recurrence.materializer import TEMPLATE_FIELDS, EventMaterializer
from app.utils.datetime_utils import (
    is_valid_timezone,
    parse_hh_mm,
    to_naive_utc,
    to_utc,
    truncate_to_minute,
    utc_now,
)
from app.utils.logging import get_logger

logger = get_logger()

NULLABLE_FIELDS = {
    "description",
    "location",
    "notes",
    "vaccine_name",
    "vaccine_manufacturer",
    "batch_number",
    "medication_name",
    "dosage",
    "days_of_week",
    "day_of_month",
    "times_per_day",
    "daily_times",
    "event_duration_minutes",
    "end_date",
}
DATETIME_FIELDS = ("start_date", "end_date")


class RecurrenceRuleService:
    """Service provider for recurrence rule management and occurrence sync"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self.materializer = EventMaterializer(db_session)

    # Lookups
    async def get_rule_by_id(
        self, user_id: uuid.UUID, rule_id: uuid.UUID
    ) -> Optional[RecurrenceRule]:
        """Get a rule owned by ``user_id`` or None"""
        result = await self.db.execute(
            select(RecurrenceRule).where(
                and_(RecurrenceRule.id == rule_id, RecurrenceRule.user_id == user_id)
            )
        )
        return result.scalar_one_or_none()

    async def _require_rule(
        self, user_id: uuid.UUID, rule_id: uuid.UUID
    ) -> RecurrenceRule:
        rule = await self.get_rule_by_id(user_id, rule_id)
        if not rule:
            raise ValueError("RECURRENCE_RULE_NOT_FOUND")
        return rule

    async def get_rules(
        self, user_id: uuid.UUID, params: RecurrenceRuleListQueryParams
    ) -> Tuple[Sequence[RecurrenceRule], int]:
        """Paginated rules for a user, newest first"""
        conditions = [RecurrenceRule.user_id == user_id]
        if params.is_active is not None:
            conditions.append(RecurrenceRule.is_active.is_(params.is_active))
        if params.pet_id:
            conditions.append(RecurrenceRule.pet_id == params.pet_id)

        total = await self.db.scalar(
            select(func.count(RecurrenceRule.id)).where(and_(*conditions))
        )
        result = await self.db.execute(
            select(RecurrenceRule)
            .where(and_(*conditions))
            .order_by(RecurrenceRule.created_at.desc(), RecurrenceRule.id)
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
        )
        return result.scalars().all(), total or 0

    async def get_events_by_rule(
        self,
        user_id: uuid.UUID,
        rule_id: uuid.UUID,
        include_past: bool = False,
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> Sequence[Event]:
        """Occurrences of a rule ordered by start time; future ones unless ``include_past``"""
        await self._require_rule(user_id, rule_id)

        conditions = [Event.recurrence_rule_id == rule_id, Event.user_id == user_id]
        if not include_past:
            conditions.append(Event.start_time >= to_naive_utc(now or utc_now()))

        result = await self.db.execute(
            select(Event)
            .where(and_(*conditions))
            .order_by(Event.start_time)
            .limit(limit)
        )
        return result.scalars().all()

    # Validation
    @staticmethod
    def _validate_pattern(rule: RecurrenceRule) -> None:
        """Write-time checks so the expander never sees an invalid rule"""
        if not is_valid_timezone(rule.timezone):
            raise ValueError(f"INVALID_TIMEZONE: '{rule.timezone}' is not an IANA zone")
        for value in rule.daily_times or []:
            parse_hh_mm(value)
        if (rule.interval or 0) < 1:
            raise ValueError("INVALID_RECURRENCE_PATTERN: interval must be at least 1")
        if any(day < 0 or day > 6 for day in rule.days_of_week or []):
            raise ValueError("INVALID_RECURRENCE_PATTERN: daysOfWeek must be within 0-6")
        if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
            raise ValueError("INVALID_RECURRENCE_PATTERN: dayOfMonth must be within 1-31")
        if rule.times_per_day is not None and not 1 <= rule.times_per_day <= 10:
            raise ValueError("INVALID_RECURRENCE_PATTERN: timesPerDay must be within 1-10")
        if rule.end_date is not None and rule.end_date < rule.start_date:
            raise ValueError("INVALID_DATE_RANGE")

    # Mutations
    async def create_rule(
        self,
        user_id: uuid.UUID,
        data: CreateRecurrenceRuleRequest,
        now: Optional[datetime] = None,
    ) -> Tuple[RecurrenceRule, int]:
        """Persist a rule for one of the user's pets and materialize it right away"""
        pet = await self.db.scalar(
            select(Pet).where(and_(Pet.id == data.pet_id, Pet.user_id == user_id))
        )
        if not pet:
            raise ValueError("PET_NOT_FOUND")

        # Attribute reads keep enums and datetimes typed; model_dump would stringify them
        values = {
            field: getattr(data, field)
            for field in type(data).model_fields
            if field != "pet_id"
        }
        for field in DATETIME_FIELDS:
            if values.get(field) is not None:
                values[field] = to_naive_utc(values[field])

        rule = RecurrenceRule(
            user_id=user_id,
            pet_id=pet.id,
            is_active=True,
            **values,
        )
        self._validate_pattern(rule)

        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)

        events_created = await self.materializer.materialize(rule, now=now)
        logger.info(
            f"Created recurrence rule {rule.id} for pet {pet.id} ({events_created} events)"
        )
        return rule, events_created

    async def update_rule(
        self,
        user_id: uuid.UUID,
        rule_id: uuid.UUID,
        data: UpdateRecurrenceRuleRequest,
        now: Optional[datetime] = None,
    ) -> Tuple[RecurrenceRule, int]:
        """
        Apply the provided fields and push template fields onto future occurrences.

        Only upcoming, non-exception occurrences starting at or after ``now`` are
        synced. Pattern changes don't move already-materialized instants; callers
        use ``regenerate_events`` for that.

        Returns:
            Tuple[RecurrenceRule, int]: (rule, number of occurrences updated)
        """
        rule = await self._require_rule(user_id, rule_id)

        changes: Dict[str, Any] = {
            field: getattr(data, field) for field in data.model_fields_set
        }
        for field in DATETIME_FIELDS:
            if changes.get(field) is not None:
                changes[field] = to_naive_utc(changes[field])
        for field, value in changes.items():
            if value is None and field not in NULLABLE_FIELDS:
                # Required columns can't be cleared
                continue
            setattr(rule, field, value)

        self._validate_pattern(rule)
        await self.db.flush()

        template = {field: getattr(rule, field) for field in TEMPLATE_FIELDS}
        result = await self.db.execute(
            update(Event)
            .where(
                and_(
                    Event.recurrence_rule_id == rule.id,
                    Event.user_id == user_id,
                    Event.start_time >= to_naive_utc(now or utc_now()),
                    Event.is_exception.is_(False),
                    Event.status == EventStatus.UPCOMING,
                )
            )
            .values(**template)
            .execution_options(synchronize_session=False)
        )
        events_updated = result.rowcount or 0
        await self.db.commit()
        await self.db.refresh(rule)

        logger.info(f"Updated recurrence rule {rule.id} ({events_updated} events synced)")
        return rule, events_updated

    async def delete_rule(self, user_id: uuid.UUID, rule_id: uuid.UUID) -> int:
        """Delete the rule with all of its occurrences, past and future"""
        rule = await self._require_rule(user_id, rule_id)

        event_ids = select(Event.id).where(Event.recurrence_rule_id == rule.id)
        await self.db.execute(
            delete(EventNotification)
            .where(EventNotification.event_id.in_(event_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(
            delete(Event)
            .where(Event.recurrence_rule_id == rule.id)
            .execution_options(synchronize_session=False)
        )
        events_deleted = result.rowcount or 0

        await self.db.execute(
            delete(RecurrenceExclusion)
            .where(RecurrenceExclusion.rule_id == rule.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(RecurrenceRule)
            .where(RecurrenceRule.id == rule.id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.db.expunge(rule)

        logger.info(f"Deleted recurrence rule {rule_id} ({events_deleted} events)")
        return events_deleted

    async def regenerate_events(
        self, user_id: uuid.UUID, rule_id: uuid.UUID, now: Optional[datetime] = None
    ) -> Tuple[int, int]:
        rule = await self._require_rule(user_id, rule_id)
        return await self.materializer.regenerate(rule, now=now)

    async def add_exception(
        self, user_id: uuid.UUID, rule_id: uuid.UUID, instant: datetime
    ) -> bool:
        """
        Exclude one instant from the series and delete its occurrence if present.

        Returns:
            bool: False when the instant was already excluded
        """
        rule = await self._require_rule(user_id, rule_id)
        excluded_at = to_naive_utc(truncate_to_minute(to_utc(instant)))

        added = await insert_if_absent(
            self.db,
            RecurrenceExclusion,
            [{"id": uuid.uuid4(), "rule_id": rule.id, "excluded_at": excluded_at}],
        )

        if added:
            occurrence_ids = select(Event.id).where(
                and_(
                    Event.recurrence_rule_id == rule.id,
                    Event.start_time == excluded_at,
                )
            )
            await self.db.execute(
                delete(EventNotification)
                .where(EventNotification.event_id.in_(occurrence_ids))
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(Event)
                .where(Event.id.in_(occurrence_ids))
                .execution_options(synchronize_session=False)
            )

        await self.db.commit()
        await self.db.refresh(rule, attribute_names=["exclusions"])
        return bool(added)

    async def generate_for_all_active_rules(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        return await self.materializer.generate_for_all_active_rules(now=now)


def get_recurrence_rule_service(
    db: AsyncSession = Depends(get_async_session),
) -> RecurrenceRuleService:
    """Dependency to get RecurrenceRuleService instance"""
    return RecurrenceRuleService(db)
