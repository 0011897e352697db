from .budget_alert_checker import budget_alert_checker_task
from .feeding_reminder_checker import feeding_reminder_checker_task
from .missed_event_checker import missed_event_checker_task
from .recurrence_generator import recurrence_generator_task
from .reminder_scheduler import reminder_scheduler_task

__all__ = [
    "recurrence_generator_task",
    "reminder_scheduler_task",
    "missed_event_checker_task",
    "feeding_reminder_checker_task",
    "budget_alert_checker_task",
]
