import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import async_session_scope
from app.services.notifications.event_reminder_service import EventReminderService
from app.tasks.worker import run_in_worker
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def reminder_scheduler_task(self, request_id: str):
    """
    Every-15-minutes task dispatching event reminders due on this tick.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(run_in_worker(run_reminder_scheduler, request_id))


async def run_reminder_scheduler(
    request_id: str, session_factory=None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    logger = get_logger().bind(request_id=request_id)
    logger.info("Starting event reminder scheduler")

    async with async_session_scope(session_factory) as db:
        stats = await EventReminderService(db).schedule_all_upcoming_reminders(now=now)

    logger.info(
        f"Event reminder scheduler completed: {stats['events_processed']} events, "
        f"{stats['reminders_sent']} reminders sent, {stats['failed_events']} failed"
    )
    return {"success": True, **stats, "request_id": request_id}
