from typing import Annotated, List
import uuid

from fastapi import APIRouter, Depends, Path, Request, status

from app.middlewares.auth_middleware import require_user
from app.schemas.recurrence_schemas import (
    AddExceptionRequest,
    CreateRecurrenceRuleRequest,
    EventResponse,
    RecurrenceRuleListQueryParams,
    RecurrenceRuleResponse,
    RuleEventsQueryParams,
    UpdateRecurrenceRuleRequest,
)
from app.services.recurrence.rule_service import (
    RecurrenceRuleService,
    get_recurrence_rule_service,
)
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

recurrence_rules_router = APIRouter(dependencies=[Depends(require_user)])


def _rule_data(rule) -> dict:
    return RecurrenceRuleResponse.model_validate(rule).model_dump(by_alias=True)


@recurrence_rules_router.get(
    "",
    response_model=List[RecurrenceRuleResponse],
    status_code=status.HTTP_200_OK,
    summary="List recurrence rules",
    description="Paginated recurrence rules of the current user, newest first. Filter by pet or active flag.",
)
async def get_recurrence_rules(
    request: Request,
    query_params: Annotated[RecurrenceRuleListQueryParams, Depends()],
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        rules, total = await rule_service.get_rules(user_id, query_params)

        return ResponseBuilder.paginated(
            request=request,
            data=[_rule_data(rule) for rule in rules],
            page=query_params.page,
            per_page=query_params.limit,
            total=total,
            message=f"Retrieved {len(rules)} recurrence rule{'s' if len(rules) != 1 else ''}",
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve recurrence rules",
            error_code="RECURRENCE_RULES_RETRIEVAL_FAILED",
        )


@recurrence_rules_router.post(
    "",
    response_model=RecurrenceRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a recurrence rule",
    description="Create a recurrence rule for one of the user's pets and materialize its occurrences over the frequency horizon",
)
async def create_recurrence_rule(
    request: Request,
    rule_data: CreateRecurrenceRuleRequest,
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    """Create a rule and generate its first batch of events"""
    try:
        rule, events_created = await rule_service.create_rule(user_id, rule_data)

        return ResponseBuilder.success(
            request=request,
            data={"rule": _rule_data(rule), "eventsCreated": events_created},
            message=f"Recurrence rule created with {events_created} events",
            status_code=status.HTTP_201_CREATED,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to create recurrence rule",
            error_code="RECURRENCE_RULE_CREATION_FAILED",
        )


@recurrence_rules_router.get(
    "/{rule_id}",
    response_model=RecurrenceRuleResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a recurrence rule",
)
async def get_recurrence_rule(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        rule = await rule_service.get_rule_by_id(user_id, rule_id)
        if not rule:
            raise ValueError("RECURRENCE_RULE_NOT_FOUND")

        return ResponseBuilder.success(
            request=request,
            data=_rule_data(rule),
            message="Recurrence rule retrieved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve recurrence rule",
            error_code="RECURRENCE_RULE_RETRIEVAL_FAILED",
        )


@recurrence_rules_router.patch(
    "/{rule_id}",
    response_model=RecurrenceRuleResponse,
    status_code=status.HTTP_200_OK,
    summary="Update a recurrence rule",
    description="Apply a partial update. Template fields are copied onto upcoming occurrences that were not edited by hand.",
)
async def update_recurrence_rule(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    rule_data: UpdateRecurrenceRuleRequest,
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        rule, events_updated = await rule_service.update_rule(user_id, rule_id, rule_data)

        return ResponseBuilder.success(
            request=request,
            data={"rule": _rule_data(rule), "eventsUpdated": events_updated},
            message="Recurrence rule updated successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to update recurrence rule",
            error_code="RECURRENCE_RULE_UPDATE_FAILED",
        )


@recurrence_rules_router.delete(
    "/{rule_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete a recurrence rule",
    description="Delete the rule together with all of its occurrences and their pending reminders",
)
async def delete_recurrence_rule(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        events_deleted = await rule_service.delete_rule(user_id, rule_id)

        return ResponseBuilder.success(
            request=request,
            data={"id": str(rule_id), "eventsDeleted": events_deleted},
            message="Recurrence rule deleted successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to delete recurrence rule",
            error_code="RECURRENCE_RULE_DELETION_FAILED",
        )


@recurrence_rules_router.post(
    "/{rule_id}/regenerate",
    status_code=status.HTTP_200_OK,
    summary="Regenerate occurrences",
    description="Drop future occurrences the rule still owns and materialize them again from the current pattern",
)
async def regenerate_recurrence_events(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        deleted, created = await rule_service.regenerate_events(user_id, rule_id)

        return ResponseBuilder.success(
            request=request,
            data={"eventsDeleted": deleted, "eventsCreated": created},
            message=f"Regenerated recurrence rule: {deleted} removed, {created} created",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to regenerate events",
            error_code="RECURRENCE_REGENERATION_FAILED",
        )


@recurrence_rules_router.post(
    "/{rule_id}/exceptions",
    status_code=status.HTTP_200_OK,
    summary="Skip one occurrence",
    description="Exclude an instant from the series. The matching occurrence is deleted and never generated again.",
)
async def add_recurrence_exception(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    exception_data: AddExceptionRequest,
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        added = await rule_service.add_exception(user_id, rule_id, exception_data.date)

        return ResponseBuilder.success(
            request=request,
            data={"added": added},
            message="Exception added" if added else "Date was already excluded",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to add exception",
            error_code="RECURRENCE_EXCEPTION_FAILED",
        )


@recurrence_rules_router.get(
    "/{rule_id}/events",
    response_model=List[EventResponse],
    status_code=status.HTTP_200_OK,
    summary="List occurrences of a rule",
)
async def get_recurrence_rule_events(
    request: Request,
    rule_id: Annotated[uuid.UUID, Path(description="Recurrence rule ID")],
    query_params: Annotated[RuleEventsQueryParams, Depends()],
    user_id: uuid.UUID = Depends(require_user),
    rule_service: RecurrenceRuleService = Depends(get_recurrence_rule_service),
):
    try:
        events = await rule_service.get_events_by_rule(
            user_id,
            rule_id,
            include_past=query_params.include_past,
            limit=query_params.limit,
        )

        return ResponseBuilder.success(
            request=request,
            data=[
                EventResponse.model_validate(event).model_dump(by_alias=True)
                for event in events
            ],
            message=f"Retrieved {len(events)} event{'s' if len(events) != 1 else ''}",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve events",
            error_code="RECURRENCE_EVENTS_RETRIEVAL_FAILED",
        )
