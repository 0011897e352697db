from fastapi import APIRouter

from .recurrence_rules import recurrence_rules_router
from .events import events_router
from .feeding_reminders import feeding_reminders_router
from .devices import devices_router
from .budget import budget_router

pet_care_router = APIRouter()

# Include sub-routers
pet_care_router.include_router(
    recurrence_rules_router, prefix="/recurrence-rules", tags=["Recurrence Rules"]
)
pet_care_router.include_router(events_router, prefix="/events", tags=["Events"])
pet_care_router.include_router(
    feeding_reminders_router,
    prefix="/feeding-schedules",
    tags=["Feeding Reminders"],
)
pet_care_router.include_router(
    devices_router, prefix="/push/devices", tags=["Push Devices"]
)
pet_care_router.include_router(budget_router, prefix="/budget", tags=["Budget"])
