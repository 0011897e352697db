from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request, status

from app.middlewares.auth_middleware import require_internal_api_key
from app.schemas.notification_schemas import JobStatusResponse
from app.services.recurrence.rule_service import (
    RecurrenceRuleService,
    get_recurrence_rule_service,
)
from app.tasks.scheduler import JobScheduler, get_job_scheduler
from app.utils.context import new_job_request_id
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

jobs_router = APIRouter(dependencies=[Depends(require_internal_api_key)])


@jobs_router.post(
    "/recurrence/generate-all",
    status_code=status.HTTP_200_OK,
    summary="Generate events for all active rules",
    description="Run the recurrence generator inline on the request's session",
)
async def generate_all_recurrence_events(
    request: Request,
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        stats = await rule_service.generate_for_all_active_rules()

        return ResponseBuilder.success(
            request=request,
            data=stats,
            message="Recurrence events generated",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to generate recurrence events",
            error_code="RECURRENCE_GENERATION_FAILED",
        )


@jobs_router.get(
    "/jobs/status",
    response_model=JobStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Periodic job status",
)
async def get_jobs_status(
    request: Request,
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    response_data = JobStatusResponse(
        scheduler_started=scheduler.is_started, jobs=scheduler.status()
    )
    return ResponseBuilder.success(
        request=request,
        data=response_data.model_dump(by_alias=True),
        message="Job status retrieved successfully",
        status_code=status.HTTP_200_OK,
    )


@jobs_router.post(
    "/jobs/{job_name}/run",
    status_code=status.HTTP_200_OK,
    summary="Trigger a periodic job",
    description="Run one job now under its lease. Fails with 409 when the job is already running.",
)
async def run_job(
    request: Request,
    job_name: Annotated[str, Path(description="Job name, e.g. reminder-scheduler")],
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    try:
        result = await scheduler.run_job(
            job_name,
            request_id=new_job_request_id(f"{job_name}-manual"),
            raise_if_running=True,
        )
        if result is None:
            raise RuntimeError(f"JOB_RUN_FAILED: Job {job_name} failed, see logs")

        return ResponseBuilder.success(
            request=request,
            data=result,
            message=f"Job {job_name} completed",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message=f"Failed to run job {job_name}", error_code="JOB_RUN_FAILED"
        )
