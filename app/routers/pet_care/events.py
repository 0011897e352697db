from typing import Annotated, List
import uuid

from fastapi import APIRouter, Depends, Path, Query, Request, status

from app.middlewares.auth_middleware import require_user
from app.schemas.recurrence_schemas import EventResponse, UpdateEventRequest
from app.services.occurrence_service import OccurrenceService, get_occurrence_service
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

events_router = APIRouter(dependencies=[Depends(require_user)])

EventId = Annotated[uuid.UUID, Path(description="Event ID")]


def _event_data(event) -> dict:
    return EventResponse.model_validate(event).model_dump(by_alias=True)


@events_router.get(
    "/missed",
    response_model=List[EventResponse],
    status_code=status.HTTP_200_OK,
    summary="List missed events",
    description="Occurrences that passed while still upcoming, most recent first",
)
async def get_missed_events(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        events = await occurrence_service.get_missed_events(user_id, limit=limit)

        return ResponseBuilder.success(
            request=request,
            data=[_event_data(event) for event in events],
            message=f"Retrieved {len(events)} missed event{'s' if len(events) != 1 else ''}",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve missed events",
            error_code="MISSED_EVENTS_RETRIEVAL_FAILED",
        )


@events_router.get(
    "/{event_id}",
    response_model=EventResponse,
    status_code=status.HTTP_200_OK,
    summary="Get an event",
)
async def get_event(
    request: Request,
    event_id: EventId,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        event = await occurrence_service.get_event(user_id, event_id)
        if not event:
            raise ValueError("EVENT_NOT_FOUND")

        return ResponseBuilder.success(
            request=request,
            data=_event_data(event),
            message="Event retrieved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve event", error_code="EVENT_RETRIEVAL_FAILED"
        )


@events_router.patch(
    "/{event_id}",
    response_model=EventResponse,
    status_code=status.HTTP_200_OK,
    summary="Edit an event",
    description="Edit a single occurrence. Occurrences of a recurrence rule become exceptions and stop following rule updates.",
)
async def update_event(
    request: Request,
    event_id: EventId,
    event_data: UpdateEventRequest,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        event = await occurrence_service.update_event(user_id, event_id, event_data)

        return ResponseBuilder.success(
            request=request,
            data=_event_data(event),
            message="Event updated successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to update event", error_code="EVENT_UPDATE_FAILED"
        )


@events_router.post(
    "/{event_id}/complete",
    response_model=EventResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete an event",
)
async def complete_event(
    request: Request,
    event_id: EventId,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        event = await occurrence_service.complete_event(user_id, event_id)

        return ResponseBuilder.success(
            request=request,
            data=_event_data(event),
            message="Event completed",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to complete event", error_code="EVENT_STATUS_UPDATE_FAILED"
        )


@events_router.post(
    "/{event_id}/cancel",
    response_model=EventResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel an event",
    description="Cancel an upcoming occurrence together with its unsent reminders",
)
async def cancel_event(
    request: Request,
    event_id: EventId,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        event = await occurrence_service.cancel_event(user_id, event_id)

        return ResponseBuilder.success(
            request=request,
            data=_event_data(event),
            message="Event cancelled",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to cancel event", error_code="EVENT_STATUS_UPDATE_FAILED"
        )


@events_router.post(
    "/{event_id}/reset",
    response_model=EventResponse,
    status_code=status.HTTP_200_OK,
    summary="Reset an event to upcoming",
)
async def reset_event(
    request: Request,
    event_id: EventId,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        event = await occurrence_service.reset_event(user_id, event_id)

        return ResponseBuilder.success(
            request=request,
            data=_event_data(event),
            message="Event reset to upcoming",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to reset event", error_code="EVENT_STATUS_UPDATE_FAILED"
        )


@events_router.delete(
    "/{event_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete an event",
)
async def delete_event(
    request: Request,
    event_id: EventId,
    user_id: uuid.UUID = Depends(require_user),
    occurrence_service: OccurrenceService = Depends(get_occurrence_service),
):
    try:
        await occurrence_service.delete_event(user_id, event_id)

        return ResponseBuilder.success(
            request=request,
            data={"id": str(event_id)},
            message="Event deleted successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to delete event", error_code="EVENT_DELETION_FAILED"
        )
