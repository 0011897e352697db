import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import async_session_scope
from app.services.occurrence_service import OccurrenceService
from app.tasks.worker import run_in_worker
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def missed_event_checker_task(self, request_id: str):
    """Every-15-minutes task flipping past upcoming occurrences to missed"""
    return asyncio.run(run_in_worker(run_missed_event_checker, request_id))


async def run_missed_event_checker(
    request_id: str, session_factory=None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    logger = get_logger().bind(request_id=request_id)

    async with async_session_scope(session_factory) as db:
        marked = await OccurrenceService(db).mark_missed_events(now=now)

    if marked:
        logger.info(f"Marked {marked} event(s) as missed")
    return {"success": True, "marked_missed": marked, "request_id": request_id}
