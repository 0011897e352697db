from typing import Annotated, List, Optional
from datetime import datetime
import uuid

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.db.models import (
    EventStatus,
    EventType,
    RecurrenceFrequency,
    ReminderPreset,
)
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from app.utils.datetime_utils import is_valid_timezone, parse_hh_mm, to_utc

Weekday = Annotated[int, Field(ge=0, le=6)]


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_timezone(value):
        raise ValueError(f"'{value}' is not a valid IANA timezone identifier")
    return value


def _check_daily_times(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return values
    for value in values:
        try:
            parse_hh_mm(value)
        except ValueError:
            raise ValueError(f"Invalid time '{value}' (expected HH:MM)")
    return values


class RecurrencePatternFields(BaseModel):
    """Event template and pattern fields shared by create and update payloads"""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[EventType] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    reminder: Optional[bool] = None
    reminder_preset: Optional[ReminderPreset] = None

    vaccine_name: Optional[str] = Field(None, max_length=200)
    vaccine_manufacturer: Optional[str] = Field(None, max_length=200)
    batch_number: Optional[str] = Field(None, max_length=100)
    medication_name: Optional[str] = Field(None, max_length=200)
    dosage: Optional[str] = Field(None, max_length=100)

    frequency: Optional[RecurrenceFrequency] = None
    interval: Optional[int] = Field(None, ge=1, description="Every N units")
    days_of_week: Optional[List[Weekday]] = Field(
        None, description="0 = Sunday ... 6 = Saturday (weekly only)"
    )
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    times_per_day: Optional[int] = Field(None, ge=1, le=10)
    daily_times: Optional[List[str]] = Field(None, description="HH:MM entries")
    event_duration_minutes: Optional[int] = Field(None, ge=0)
    timezone: Optional[str] = Field(None, min_length=1, max_length=64)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    @field_validator("daily_times")
    @classmethod
    def validate_daily_times(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _check_daily_times(v)

    @field_validator("days_of_week")
    @classmethod
    def dedupe_days_of_week(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return sorted(set(v)) if v is not None else v

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.start_date and self.end_date:
            if to_utc(self.end_date) < to_utc(self.start_date):
                raise ValueError("endDate must not be before startDate")
        return self


class CreateRecurrenceRuleRequest(RecurrencePatternFields):
    """Request schema for creating a recurrence rule"""

    pet_id: uuid.UUID = Field(..., description="Pet the events belong to")
    title: str = Field(..., min_length=1, max_length=200)
    type: EventType = Field(..., description="Event type")
    reminder: bool = False
    reminder_preset: ReminderPreset = ReminderPreset.STANDARD
    frequency: RecurrenceFrequency = Field(..., description="Recurrence frequency")
    interval: int = Field(1, ge=1, description="Every N units")
    timezone: str = Field(..., min_length=1, max_length=64)
    start_date: datetime = Field(..., description="First day of the series (UTC)")


class UpdateRecurrenceRuleRequest(RecurrencePatternFields):
    """
    Partial update. Only fields present in the payload are applied, so an
    explicit ``endDate: null`` clears the end date.
    """

    is_active: Optional[bool] = None


class AddExceptionRequest(BaseModel):
    date: datetime = Field(..., description="Occurrence instant to skip")


class RecurrenceRuleListQueryParams(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    is_active: Optional[bool] = None
    pet_id: Optional[uuid.UUID] = None


class RuleEventsQueryParams(BaseModel):
    include_past: bool = False
    limit: int = Field(50, ge=1, le=500)


class RecurrenceRuleResponse(BaseModel):
    """Response schema for a recurrence rule"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    pet_id: uuid.UUID
    title: str
    description: Optional[str] = None
    type: EventType
    location: Optional[str] = None
    notes: Optional[str] = None
    reminder: bool
    reminder_preset: ReminderPreset
    vaccine_name: Optional[str] = None
    vaccine_manufacturer: Optional[str] = None
    batch_number: Optional[str] = None
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: RecurrenceFrequency
    interval: int
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = None
    times_per_day: Optional[int] = None
    daily_times: Optional[List[str]] = None
    event_duration_minutes: Optional[int] = None
    timezone: str
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool
    last_generated_date: Optional[datetime] = None
    excluded_dates: List[datetime] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EventResponse(BaseModel):
    """Response schema for a materialized or standalone event"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    pet_id: uuid.UUID
    recurrence_rule_id: Optional[uuid.UUID] = None
    title: str
    description: Optional[str] = None
    type: EventType
    location: Optional[str] = None
    notes: Optional[str] = None
    reminder: bool
    reminder_preset: ReminderPreset
    vaccine_name: Optional[str] = None
    vaccine_manufacturer: Optional[str] = None
    batch_number: Optional[str] = None
    medication_name: Optional[str] = None
    dosage: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    status: EventStatus
    series_index: Optional[int] = None
    is_exception: bool
    scheduled_notification_ids: List[str] = Field(default_factory=list)


class UpdateEventRequest(BaseModel):
    """Manual edit of a single occurrence; detaches it from rule-driven sync"""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[EventType] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    reminder: Optional[bool] = None
    reminder_preset: Optional[ReminderPreset] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
