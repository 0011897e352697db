from typing import List
import uuid

from fastapi import APIRouter, Depends, Request, status

from app.middlewares.auth_middleware import require_user
from app.schemas.notification_schemas import (
    DeactivateDeviceRequest,
    DeviceResponse,
    RegisterDeviceRequest,
)
from app.services.notifications.device_registry import (
    DeviceRegistryService,
    get_device_registry_service,
)
from app.utils.error_handlers import handle_service_error
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

devices_router = APIRouter(dependencies=[Depends(require_user)])


@devices_router.get(
    "",
    response_model=List[DeviceResponse],
    status_code=status.HTTP_200_OK,
    summary="List active push devices",
)
async def get_devices(
    request: Request,
    user_id: uuid.UUID = Depends(require_user),
    device_service: DeviceRegistryService = Depends(get_device_registry_service),
):
    try:
        devices = await device_service.get_active_devices(user_id)

        return ResponseBuilder.success(
            request=request,
            data=[
                DeviceResponse.model_validate(device).model_dump(by_alias=True)
                for device in devices
            ],
            message=f"Retrieved {len(devices)} device{'s' if len(devices) != 1 else ''}",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to retrieve devices", error_code="DEVICES_RETRIEVAL_FAILED"
        )


@devices_router.post(
    "",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push device",
    description="Register or refresh an Expo push token. A device id already known is taken over by the current user.",
)
async def register_device(
    request: Request,
    device_data: RegisterDeviceRequest,
    user_id: uuid.UUID = Depends(require_user),
    device_service: DeviceRegistryService = Depends(get_device_registry_service),
):
    try:
        device = await device_service.register_device(
            user_id,
            expo_push_token=device_data.expo_push_token,
            device_id=device_data.device_id,
            platform=device_data.platform,
            app_version=device_data.app_version,
        )

        return ResponseBuilder.success(
            request=request,
            data=DeviceResponse.model_validate(device).model_dump(by_alias=True),
            message="Device registered successfully",
            status_code=status.HTTP_201_CREATED,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to register device", error_code="DEVICE_REGISTRATION_FAILED"
        )


@devices_router.delete(
    "",
    status_code=status.HTTP_200_OK,
    summary="Deactivate a push device",
)
async def deactivate_device(
    request: Request,
    device_data: DeactivateDeviceRequest,
    user_id: uuid.UUID = Depends(require_user),
    device_service: DeviceRegistryService = Depends(get_device_registry_service),
):
    try:
        if not await device_service.deactivate_device(user_id, device_data.device_id):
            raise ValueError("DEVICE_NOT_FOUND")

        return ResponseBuilder.success(
            request=request,
            data={"deviceId": device_data.device_id},
            message="Device deactivated successfully",
            status_code=status.HTTP_200_OK,
        )

    except (ValueError, RuntimeError) as e:
        return handle_service_error(request, e)
    except Exception:
        raise BusinessLogicError(
            message="Failed to deactivate device",
            error_code="DEVICE_DEACTIVATION_FAILED",
        )
