from .push_gateway import PushDeliveryStatus, PushGateway, PushMessage, PushResult
from .device_registry import DeviceRegistryService, DispatchOutcome
from .event_reminder_service import EventReminderService
from .feeding_reminder_service import FeedingReminderService

__all__ = [
    "PushDeliveryStatus",
    "PushGateway",
    "PushMessage",
    "PushResult",
    "DeviceRegistryService",
    "DispatchOutcome",
    "EventReminderService",
    "FeedingReminderService",
]
