from typing import Any, Awaitable, Callable, Dict

from app.db.session import isolated_session_factory


async def run_in_worker(
    job: Callable[..., Awaitable[Dict[str, Any]]], request_id: str
) -> Dict[str, Any]:
    """Run an async job body from a Celery task on its own engine"""
    async with isolated_session_factory() as session_factory:
        return await job(request_id, session_factory=session_factory)
