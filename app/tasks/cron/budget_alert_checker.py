import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import async_session_scope
from app.services.budget_alert_service import BudgetAlertService
from app.tasks.worker import run_in_worker
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def budget_alert_checker_task(self, request_id: str):
    """Hourly task sending monthly budget alerts"""
    return asyncio.run(run_in_worker(run_budget_alert_checker, request_id))


async def run_budget_alert_checker(
    request_id: str, session_factory=None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    logger = get_logger().bind(request_id=request_id)
    logger.info("Starting budget alert check")

    async with async_session_scope(session_factory) as db:
        stats = await BudgetAlertService(db).send_alerts_to_all_users(now=now)

    return {"success": True, **stats, "request_id": request_id}
