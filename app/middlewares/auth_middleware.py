import secrets
import uuid
from typing import Optional

from fastapi import Depends, Header, Request

from app.config.settings import settings
from app.utils.errors import AuthenticationError, AuthorizationError
from app.utils.logging import get_logger

logger = get_logger()

USER_ID_HEADER = "X-User-Id"
INTERNAL_API_KEY_HEADER = "X-Internal-Api-Key"


class AuthState:
    """Authentication state to be stored in request.state"""

    def __init__(self, user_id: uuid.UUID, is_authenticated: bool = True):
        self.user_id = user_id
        self.is_authenticated = is_authenticated


def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, alias=USER_ID_HEADER),
) -> AuthState:
    """
    Dependency resolving the caller from the identity header set by the
    upstream auth gateway.
    """
    auth_state = getattr(request.state, "auth", None)
    if auth_state and auth_state.is_authenticated:
        return auth_state

    if not x_user_id:
        raise AuthenticationError("Not authenticated", "NOT_AUTHENTICATED")
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise AuthenticationError("Invalid user identity", "AUTH_ERROR")

    request.state.auth = AuthState(user_id=user_id)
    return request.state.auth


def require_user(current_user: AuthState = Depends(get_current_user)) -> uuid.UUID:
    """Dependency returning the authenticated user's id"""
    return current_user.user_id


def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(None, alias=INTERNAL_API_KEY_HEADER),
) -> None:
    """Shared-secret check for the privileged trigger endpoints"""
    if not settings.INTERNAL_API_KEY:
        raise AuthorizationError("Internal API is disabled", "INTERNAL_API_DISABLED")
    if not x_internal_api_key or not secrets.compare_digest(
        x_internal_api_key.encode(), settings.INTERNAL_API_KEY.encode()
    ):
        logger.warning("Rejected internal API call with an invalid key")
        raise AuthenticationError("Invalid internal API key", "INVALID_API_KEY")
