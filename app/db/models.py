from typing import List, Optional
from datetime import datetime
import uuid
from sqlalchemy import (
    JSON,
    String,
    Boolean,
    Integer,
    Float,
    Text,
    ForeignKey,
    Enum,
    Index,
    func,
    text,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum


class Base(DeclarativeBase):
    pass


# Enums
class EventType(enum.Enum):
    FEEDING = "feeding"
    EXERCISE = "exercise"
    GROOMING = "grooming"
    PLAY = "play"
    TRAINING = "training"
    VET_VISIT = "vet_visit"
    WALK = "walk"
    BATH = "bath"
    VACCINATION = "vaccination"
    MEDICATION = "medication"
    OTHER = "other"


class EventStatus(enum.Enum):
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class ReminderPreset(enum.Enum):
    STANDARD = "standard"
    COMPACT = "compact"
    MINIMAL = "minimal"


class RecurrenceFrequency(enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"
    TIMES_PER_DAY = "times_per_day"


class NotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AlertSeverity(enum.Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class DevicePlatform(enum.Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


def _uuid_pk():
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


# Directory / preferences
class Pet(Base, AuditMixin):
    __tablename__ = "pets"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    species: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("idx_pets_user_id", "user_id"),)


class UserSettings(Base, AuditMixin):
    __tablename__ = "user_settings"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), default="TRY", nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), default="Europe/Istanbul", nullable=False
    )
    language: Mapped[str] = mapped_column(String(10), default="tr", nullable=False)
    default_event_time: Mapped[str] = mapped_column(
        String(5), default="09:00", nullable=False
    )
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    budget_notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    # Stored for the client; not applied to trigger computation yet
    quiet_hours_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    quiet_hours_start: Mapped[Optional[str]] = mapped_column(String(5))
    quiet_hours_end: Mapped[Optional[str]] = mapped_column(String(5))


class UserDevice(Base, AuditMixin):
    __tablename__ = "user_devices"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    expo_push_token: Mapped[str] = mapped_column(String(255), nullable=False)
    device_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    platform: Mapped[DevicePlatform] = mapped_column(
        Enum(DevicePlatform, name="device_platform"), nullable=False
    )
    app_version: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_user_devices_user_active", "user_id", "is_active"),
        Index("idx_user_devices_token", "expo_push_token"),
    )


# Recurrence
class RecurrenceRule(Base, AuditMixin):
    __tablename__ = "recurrence_rules"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    pet_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pets.id", ondelete="CASCADE"), nullable=False
    )

    # Event template
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[EventType] = mapped_column(
        Enum(EventType, name="event_type"), nullable=False
    )
    location: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    reminder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_preset: Mapped[ReminderPreset] = mapped_column(
        Enum(ReminderPreset, name="reminder_preset"),
        default=ReminderPreset.STANDARD,
        nullable=False,
    )
    vaccine_name: Mapped[Optional[str]] = mapped_column(String(200))
    vaccine_manufacturer: Mapped[Optional[str]] = mapped_column(String(200))
    batch_number: Mapped[Optional[str]] = mapped_column(String(100))
    medication_name: Mapped[Optional[str]] = mapped_column(String(200))
    dosage: Mapped[Optional[str]] = mapped_column(String(100))

    # Pattern
    frequency: Mapped[RecurrenceFrequency] = mapped_column(
        Enum(RecurrenceFrequency, name="recurrence_frequency"), nullable=False
    )
    interval: Mapped[int] = mapped_column(
        "repeat_interval", Integer, default=1, nullable=False
    )
    days_of_week: Mapped[Optional[List[int]]] = mapped_column(JSON)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    times_per_day: Mapped[Optional[int]] = mapped_column(Integer)
    daily_times: Mapped[Optional[List[str]]] = mapped_column(JSON)
    event_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_generated_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    exclusions: Mapped[List["RecurrenceExclusion"]] = relationship(
        back_populates="rule",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    events: Mapped[List["Event"]] = relationship(
        back_populates="recurrence_rule",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "repeat_interval >= 1", name="ck_recurrence_rules_interval_positive"
        ),
        CheckConstraint(
            "day_of_month IS NULL OR (day_of_month >= 1 AND day_of_month <= 31)",
            name="ck_recurrence_rules_day_of_month_range",
        ),
        CheckConstraint(
            "times_per_day IS NULL OR (times_per_day >= 1 AND times_per_day <= 10)",
            name="ck_recurrence_rules_times_per_day_range",
        ),
        Index("idx_recurrence_rules_user_active", "user_id", "is_active"),
        Index("idx_recurrence_rules_user_pet", "user_id", "pet_id"),
    )

    @property
    def excluded_dates(self) -> List[datetime]:
        return [exclusion.excluded_at for exclusion in self.exclusions]


class RecurrenceExclusion(Base):
    __tablename__ = "recurrence_exclusions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    rule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("recurrence_rules.id", ondelete="CASCADE"), nullable=False
    )
    # Minute-truncated naive UTC instant
    excluded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    rule: Mapped["RecurrenceRule"] = relationship(back_populates="exclusions")

    __table_args__ = (
        UniqueConstraint(
            "rule_id", "excluded_at", name="uq_recurrence_exclusions_rule_instant"
        ),
    )


class Event(Base, AuditMixin):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    pet_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pets.id", ondelete="CASCADE"), nullable=False
    )
    recurrence_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("recurrence_rules.id", ondelete="CASCADE")
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[EventType] = mapped_column(
        Enum(EventType, name="event_type"), nullable=False
    )
    location: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    reminder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_preset: Mapped[ReminderPreset] = mapped_column(
        Enum(ReminderPreset, name="reminder_preset"),
        default=ReminderPreset.STANDARD,
        nullable=False,
    )
    vaccine_name: Mapped[Optional[str]] = mapped_column(String(200))
    vaccine_manufacturer: Mapped[Optional[str]] = mapped_column(String(200))
    batch_number: Mapped[Optional[str]] = mapped_column(String(100))
    medication_name: Mapped[Optional[str]] = mapped_column(String(200))
    dosage: Mapped[Optional[str]] = mapped_column(String(100))

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status"),
        default=EventStatus.UPCOMING,
        nullable=False,
    )
    series_index: Mapped[Optional[int]] = mapped_column(Integer)
    is_exception: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scheduled_notification_ids: Mapped[List[str]] = mapped_column(
        JSON, default=list, nullable=False
    )

    recurrence_rule: Mapped[Optional["RecurrenceRule"]] = relationship(
        back_populates="events"
    )
    pet: Mapped["Pet"] = relationship(lazy="joined")

    __table_args__ = (
        # Materialization idempotency key; NULL rule ids (standalone events) never collide
        UniqueConstraint(
            "recurrence_rule_id", "start_time", name="uq_events_rule_start_time"
        ),
        Index("idx_events_user_start", "user_id", "start_time"),
        Index("idx_events_status_start", "status", "start_time"),
    )


# Notification ledgers
class EventNotification(Base, AuditMixin):
    __tablename__ = "event_notifications"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    notification_key: Mapped[str] = mapped_column(String(120), nullable=False)
    expo_push_token: Mapped[Optional[str]] = mapped_column(String(255))
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status"),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint(
            "event_id", "scheduled_for", name="uq_event_notifications_event_trigger"
        ),
        Index("idx_event_notifications_status_scheduled", "status", "scheduled_for"),
    )


class FeedingSchedule(Base, AuditMixin):
    __tablename__ = "feeding_schedules"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    pet_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pets.id", ondelete="CASCADE"), nullable=False
    )
    time: Mapped[str] = mapped_column(String(5), nullable=False)
    food_type: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[str] = mapped_column(String(100), nullable=False)
    # Comma separated lowercase weekday names, e.g. "monday,wednesday"
    days: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminders_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    reminder_minutes_before: Mapped[int] = mapped_column(
        Integer, default=15, nullable=False
    )
    last_notification_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_notification_time: Mapped[Optional[datetime]] = mapped_column(DateTime)

    pet: Mapped["Pet"] = relationship(lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "reminder_minutes_before >= 0",
            name="ck_feeding_schedules_reminder_minutes_non_negative",
        ),
        Index("idx_feeding_schedules_user_active", "user_id", "is_active"),
    )


class FeedingNotification(Base, AuditMixin):
    __tablename__ = "feeding_notifications"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("feeding_schedules.id", ondelete="CASCADE"), nullable=False
    )
    pet_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status"),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        # At most one pending reminder per trigger; sent/failed history may repeat
        Index(
            "uq_feeding_notifications_pending_trigger",
            "schedule_id",
            "scheduled_for",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
        Index("idx_feeding_notifications_status_scheduled", "status", "scheduled_for"),
    )


# Budgets
class Expense(Base, AuditMixin):
    __tablename__ = "expenses"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    pet_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="TRY", nullable=False)
    # Converted amount in the user's base currency at the time of entry
    amount_base: Mapped[Optional[float]] = mapped_column(Float)
    base_currency: Mapped[Optional[str]] = mapped_column(String(3))
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_expenses_user_date", "user_id", "date"),)


class UserBudget(Base, AuditMixin):
    __tablename__ = "user_budgets"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="TRY", nullable=False)
    alert_threshold: Mapped[float] = mapped_column(Float, default=0.8, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_alert_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_alert_severity: Mapped[Optional[AlertSeverity]] = mapped_column(
        Enum(AlertSeverity, name="alert_severity")
    )
    last_alert_period: Mapped[Optional[str]] = mapped_column(String(7))
    last_alert_percentage: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_user_budgets_amount_positive"),
        CheckConstraint(
            "alert_threshold > 0 AND alert_threshold <= 1",
            name="ck_user_budgets_threshold_range",
        ),
        Index("idx_user_budgets_is_active", "is_active"),
    )
