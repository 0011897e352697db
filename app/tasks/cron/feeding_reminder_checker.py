import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import async_session_scope
from app.services.notifications.feeding_reminder_service import FeedingReminderService
from app.tasks.worker import run_in_worker
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def feeding_reminder_checker_task(self, request_id: str):
    """
    Every-15-minutes task sending due feeding reminders and repairing broken
    reminder chains.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(run_in_worker(run_feeding_reminder_checker, request_id))


async def run_feeding_reminder_checker(
    request_id: str, session_factory=None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    logger = get_logger().bind(request_id=request_id)
    logger.info("Starting feeding reminder check")

    async with async_session_scope(session_factory) as db:
        stats = await FeedingReminderService(db).check_feeding_reminders(now=now)

    logger.info(
        f"Feeding reminder check completed: {stats['checked']} checked, "
        f"{stats['sent']} sent, {stats['failed']} failed, {stats['retried']} retried, "
        f"{stats['rescheduled']} rescheduled"
    )
    return {"success": True, **stats, "request_id": request_id}
