from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = settings.redis_url
result_backend = settings.redis_url

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = settings.SCHEDULER_TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

# Exponential Backoff Settings
task_retry_backoff = True
task_retry_backoff_max = 700  # Max 700 seconds
task_retry_jitter = False

# Shared with the in-process JobScheduler
job_crontabs = {
    # Daily at 02:00
    "recurrence-generator": crontab(hour=2, minute=0),
    # Every 15 minutes
    "reminder-scheduler": crontab(minute="*/15"),
    "missed-event-checker": crontab(minute="*/15"),
    "feeding-reminder-checker": crontab(minute="*/15"),
    # Hourly
    "budget-alert-checker": crontab(minute=0),
}

job_tasks = {
    "recurrence-generator": "app.tasks.cron.recurrence_generator.recurrence_generator_task",
    "reminder-scheduler": "app.tasks.cron.reminder_scheduler.reminder_scheduler_task",
    "missed-event-checker": "app.tasks.cron.missed_event_checker.missed_event_checker_task",
    "feeding-reminder-checker": "app.tasks.cron.feeding_reminder_checker.feeding_reminder_checker_task",
    "budget-alert-checker": "app.tasks.cron.budget_alert_checker.budget_alert_checker_task",
}

beat_schedule = {
    name: {
        "task": job_tasks[name],
        "schedule": schedule,
        "args": (f"{name}-cron",),
    }
    for name, schedule in job_crontabs.items()
}

# Default Queue
task_default_queue = "petcare"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
