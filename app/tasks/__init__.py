from .cron import *

__all__ = [
    # Scheduled/Cron Tasks
    "recurrence_generator_task",
    "reminder_scheduler_task",
    "missed_event_checker_task",
    "feeding_reminder_checker_task",
    "budget_alert_checker_task",
]
