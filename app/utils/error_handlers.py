from fastapi import Request, status

from app.utils.responses import ResponseBuilder

# Services raise ValueError("ERROR_CODE") or ValueError("ERROR_CODE: detail")
ERROR_STATUS_MAPPING = {
    # Ownership / lookup
    "PET_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "RECURRENCE_RULE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "EVENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "FEEDING_SCHEDULE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DEVICE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "BUDGET_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    # Write-time validation
    "INVALID_TIMEZONE": status.HTTP_400_BAD_REQUEST,
    "INVALID_TIME_FORMAT": status.HTTP_400_BAD_REQUEST,
    "INVALID_DATE_RANGE": status.HTTP_400_BAD_REQUEST,
    "INVALID_RECURRENCE_PATTERN": status.HTTP_400_BAD_REQUEST,
    "INVALID_BUDGET_AMOUNT": status.HTTP_400_BAD_REQUEST,
    "INVALID_STATUS_TRANSITION": status.HTTP_409_CONFLICT,
    # Jobs
    "UNKNOWN_JOB": status.HTTP_404_NOT_FOUND,
    "JOB_ALREADY_RUNNING": status.HTTP_409_CONFLICT,
    "JOB_RUN_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

ERROR_MESSAGES = {
    "PET_NOT_FOUND": "Pet not found",
    "RECURRENCE_RULE_NOT_FOUND": "Recurrence rule not found",
    "EVENT_NOT_FOUND": "Event not found",
    "FEEDING_SCHEDULE_NOT_FOUND": "Feeding schedule not found",
    "DEVICE_NOT_FOUND": "Device not found",
    "BUDGET_NOT_FOUND": "Budget not found",
    "INVALID_TIMEZONE": "Timezone must be a valid IANA identifier",
    "INVALID_TIME_FORMAT": "Time must use the HH:MM 24-hour format",
    "INVALID_DATE_RANGE": "End date must not be before the start date",
    "INVALID_RECURRENCE_PATTERN": "Recurrence pattern is invalid",
    "INVALID_BUDGET_AMOUNT": "Budget amount must be greater than 0",
    "INVALID_STATUS_TRANSITION": "Event status change is not allowed",
    "UNKNOWN_JOB": "Unknown scheduled job",
    "JOB_ALREADY_RUNNING": "Job is already running",
    "JOB_RUN_FAILED": "Job run failed",
}


def handle_service_error(request: Request, error: Exception):
    """Centralized service error handler for all routers"""
    error_message = str(error)

    if ":" in error_message:
        error_code, details = (part.strip() for part in error_message.split(":", 1))
    else:
        error_code, details = error_message, None

    status_code = ERROR_STATUS_MAPPING.get(
        error_code, status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    message = details or ERROR_MESSAGES.get(error_code, "An unexpected error occurred")

    return ResponseBuilder.error(
        request=request,
        message=message,
        error_code=error_code,
        status_code=status_code,
    )
