import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import async_session_scope
from app.services.recurrence.rule_service import RecurrenceRuleService
from app.tasks.worker import run_in_worker
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def recurrence_generator_task(self, request_id: str):
    """
    Daily task that tops every active recurrence rule up to its horizon.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(run_in_worker(run_recurrence_generator, request_id))


async def run_recurrence_generator(
    request_id: str, session_factory=None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    logger = get_logger().bind(request_id=request_id)
    logger.info("Starting recurrence generator")

    async with async_session_scope(session_factory) as db:
        stats = await RecurrenceRuleService(db).generate_for_all_active_rules(now=now)

    logger.info(
        f"Recurrence generator completed: {stats['rules_processed']} rules, "
        f"{stats['events_created']} events created, {stats['failed_rules']} failed"
    )
    return {"success": True, **stats, "request_id": request_id}
