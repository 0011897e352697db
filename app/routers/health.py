from fastapi import APIRouter, Request

from app.config.settings import settings
from app.tasks.scheduler import job_scheduler
from app.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and whether the in-process job scheduler runs
    """
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "schedulerStarted": job_scheduler.is_started,
        },
        message="Service is running",
    )
