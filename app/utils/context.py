import uuid
from contextvars import ContextVar
from typing import Optional

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_context.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    request_id_context.set(request_id)


def new_job_request_id(job_name: str) -> str:
    """Request ID used by scheduled job runs, e.g. ``reminder-scheduler-1a2b3c4d``."""
    return f"{job_name}-{uuid.uuid4().hex[:8]}"
