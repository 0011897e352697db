from typing import Annotated
import uuid

from fastapi import APIRouter, Depends, Path, Request, status

from app.middlewares.auth_middleware import require_user
from app.schemas.notification_schemas import (
    FeedingNotificationCountsResponse,
    FeedingScheduleResponse,
    SendFeedingReminderResponse,
    UpdateReminderSettingsRequest,
)
from app.services.notifications.feeding_reminder_service import (
    FeedingReminderService,
    get_feeding_reminder_service,
)
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

feeding_reminders_router = APIRouter(dependencies=[Depends(require_user)])

ScheduleId = Annotated[uuid.UUID, Path(description="Feeding schedule ID")]


@feeding_reminders_router.put(
    "/{schedule_id}/reminder",
    response_model=FeedingScheduleResponse,
    status_code=status.HTTP_200_OK,
    summary="Update feeding reminder settings",
    description="Enable or disable reminders for a feeding schedule. Enabling schedules the next reminder, disabling cancels pending ones.",
)
async def update_feeding_reminder_settings(
    request: Request,
    schedule_id: ScheduleId,
    settings_data: UpdateReminderSettingsRequest,
    user_id: uuid.UUID = Depends(require_user),
    feeding_service: FeedingReminderService = Depends(get_feeding_reminder_service),
):
    try:
        schedule = await feeding_service.update_reminder_settings(
            user_id,
            schedule_id,
            enabled=settings_data.enabled,
            minutes_before=settings_data.minutes_before,
        )

        return ResponseBuilder.success(
            request=request,
            data=FeedingScheduleResponse.model_validate(schedule).model_dump(by_alias=True),
            message=f"Feeding reminders {'enabled' if schedule.reminders_enabled else 'disabled'}",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to update feeding reminder settings",
            error_code="FEEDING_REMINDER_UPDATE_FAILED",
        )


@feeding_reminders_router.post(
    "/{schedule_id}/reminder",
    response_model=SendFeedingReminderResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a feeding reminder now",
)
async def send_feeding_reminder(
    request: Request,
    schedule_id: ScheduleId,
    user_id: uuid.UUID = Depends(require_user),
    feeding_service: FeedingReminderService = Depends(get_feeding_reminder_service),
):
    try:
        sent_count = await feeding_service.send_feeding_reminder(user_id, schedule_id)

        return ResponseBuilder.success(
            request=request,
            data=SendFeedingReminderResponse(
                schedule_id=schedule_id, sent_count=sent_count
            ).model_dump(by_alias=True),
            message=f"Feeding reminder sent to {sent_count} device{'s' if sent_count != 1 else ''}",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to send feeding reminder",
            error_code="FEEDING_REMINDER_SEND_FAILED",
        )


@feeding_reminders_router.post(
    "/{schedule_id}/complete",
    response_model=FeedingScheduleResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark a feeding as done",
    description="Cancel the pending reminder and schedule the one after the next feeding slot",
)
async def complete_feeding(
    request: Request,
    schedule_id: ScheduleId,
    user_id: uuid.UUID = Depends(require_user),
    feeding_service: FeedingReminderService = Depends(get_feeding_reminder_service),
):
    try:
        schedule = await feeding_service.mark_feeding_completed(user_id, schedule_id)

        return ResponseBuilder.success(
            request=request,
            data=FeedingScheduleResponse.model_validate(schedule).model_dump(by_alias=True),
            message="Feeding marked as completed",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to complete feeding",
            error_code="FEEDING_COMPLETION_FAILED",
        )


@feeding_reminders_router.get(
    "/{schedule_id}/notifications",
    response_model=FeedingNotificationCountsResponse,
    status_code=status.HTTP_200_OK,
    summary="Feeding reminder counts by status",
)
async def get_feeding_notification_counts(
    request: Request,
    schedule_id: ScheduleId,
    user_id: uuid.UUID = Depends(require_user),
    feeding_service: FeedingReminderService = Depends(get_feeding_reminder_service),
):
    try:
        counts = await feeding_service.get_schedule_notification_counts(
            user_id, schedule_id
        )

        return ResponseBuilder.success(
            request=request,
            data=FeedingNotificationCountsResponse(
                schedule_id=schedule_id, counts=counts
            ).model_dump(by_alias=True),
            message="Feeding reminder counts retrieved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve feeding reminder counts",
            error_code="FEEDING_REMINDER_COUNTS_FAILED",
        )
