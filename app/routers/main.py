from fastapi import APIRouter

from app.routers.health import health_router
from app.routers.pet_care import pet_care_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(pet_care_router)
main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
