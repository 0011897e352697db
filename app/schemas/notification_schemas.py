from datetime import datetime
from typing import Dict, List, Optional
import uuid

from pydantic import ConfigDict, Field

from app.db.models import AlertSeverity, DevicePlatform
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


# Devices
class RegisterDeviceRequest(BaseModel):
    """Request schema for registering a push-capable device"""

    expo_push_token: str = Field(..., min_length=1, max_length=255)
    device_id: str = Field(..., min_length=1, max_length=255)
    platform: DevicePlatform
    app_version: Optional[str] = Field(None, max_length=50)


class DeactivateDeviceRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)


class DeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    device_id: str
    platform: DevicePlatform
    app_version: Optional[str] = None
    is_active: bool
    last_active_at: datetime


# Feeding reminders
class UpdateReminderSettingsRequest(BaseModel):
    enabled: bool
    minutes_before: Optional[int] = Field(None, ge=0, le=1440)


class FeedingScheduleResponse(BaseModel):
    """Reminder-related view of a feeding schedule"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    pet_id: uuid.UUID
    time: str
    food_type: str
    amount: str
    days: str
    is_active: bool
    reminders_enabled: bool
    reminder_minutes_before: int
    last_notification_at: Optional[datetime] = None
    next_notification_time: Optional[datetime] = None


class SendFeedingReminderResponse(BaseModel):
    schedule_id: uuid.UUID
    sent_count: int


class FeedingNotificationCountsResponse(BaseModel):
    schedule_id: uuid.UUID
    counts: Dict[str, int]


# Budget
class UpdateBudgetRequest(BaseModel):
    amount: float = Field(..., gt=0)
    alert_threshold: Optional[float] = Field(None, gt=0, le=1)
    is_active: Optional[bool] = None


class BudgetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: float
    currency: str
    alert_threshold: float
    is_active: bool
    last_alert_at: Optional[datetime] = None
    last_alert_severity: Optional[AlertSeverity] = None
    last_alert_period: Optional[str] = None


class BudgetAlertStatusResponse(BaseModel):
    has_alert: bool
    percentage: float
    severity: Optional[AlertSeverity] = None
    last_alert_at: Optional[datetime] = None


# Jobs
class JobStatusItem(BaseModel):
    name: str
    schedule: str
    running: bool
    lease_id: Optional[str] = None
    runs: int
    failures: int
    skipped: int
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None


class JobStatusResponse(BaseModel):
    scheduler_started: bool
    jobs: List[JobStatusItem]
