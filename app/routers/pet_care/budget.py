import uuid

from fastapi import APIRouter, Depends, Request, status

from app.middlewares.auth_middleware import require_user
from app.schemas.notification_schemas import (
    BudgetAlertStatusResponse,
    BudgetResponse,
    UpdateBudgetRequest,
)
from app.services.budget_alert_service import (
    BudgetAlertService,
    get_budget_alert_service,
)
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

budget_router = APIRouter(dependencies=[Depends(require_user)])


@budget_router.get(
    "",
    response_model=BudgetResponse,
    status_code=status.HTTP_200_OK,
    summary="Get the monthly budget",
)
async def get_budget(
    request: Request,
    user_id: uuid.UUID = Depends(require_user),
    budget_service: BudgetAlertService = Depends(get_budget_alert_service),
):
    try:
        budget = await budget_service.get_budget(user_id)
        if not budget:
            raise ValueError("BUDGET_NOT_FOUND")

        return ResponseBuilder.success(
            request=request,
            data=BudgetResponse.model_validate(budget).model_dump(by_alias=True),
            message="Budget retrieved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve budget", error_code="BUDGET_RETRIEVAL_FAILED"
        )


@budget_router.put(
    "",
    response_model=BudgetResponse,
    status_code=status.HTTP_200_OK,
    summary="Set the monthly budget",
    description="Create or replace the monthly budget in the user's base currency. Changing the limits re-arms this month's alerts.",
)
async def update_budget(
    request: Request,
    budget_data: UpdateBudgetRequest,
    user_id: uuid.UUID = Depends(require_user),
    budget_service: BudgetAlertService = Depends(get_budget_alert_service),
):
    try:
        budget = await budget_service.update_budget(
            user_id,
            amount=budget_data.amount,
            alert_threshold=budget_data.alert_threshold,
            is_active=budget_data.is_active,
        )

        return ResponseBuilder.success(
            request=request,
            data=BudgetResponse.model_validate(budget).model_dump(by_alias=True),
            message="Budget saved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to save budget", error_code="BUDGET_UPDATE_FAILED"
        )


@budget_router.get(
    "/alert-status",
    response_model=BudgetAlertStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Current month budget alert status",
)
async def get_budget_alert_status(
    request: Request,
    user_id: uuid.UUID = Depends(require_user),
    budget_service: BudgetAlertService = Depends(get_budget_alert_service),
):
    try:
        alert_status = await budget_service.get_budget_alert_status(user_id)

        return ResponseBuilder.success(
            request=request,
            data=BudgetAlertStatusResponse(**alert_status).model_dump(by_alias=True),
            message="Budget alert status retrieved successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve budget alert status",
            error_code="BUDGET_ALERT_STATUS_FAILED",
        )
