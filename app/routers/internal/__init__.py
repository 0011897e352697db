from fastapi import APIRouter

from .jobs import jobs_router

internal_router = APIRouter()

internal_router.include_router(jobs_router, tags=["Internal - Jobs"])
