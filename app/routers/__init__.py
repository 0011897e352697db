from .main import main_router
from .internal import internal_router

__all__ = ["main_router", "internal_router"]
