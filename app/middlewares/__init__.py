from .request_id_middleware import *
from .security_middleware import *
from .auth_middleware import *

__all__ = [
    "RequestIDMiddleware",
    "DevSecurityMiddleware",
    "ProdSecurityMiddleware",
    "AuthState",
    "get_current_user",
    "require_user",
    "require_internal_api_key",
]
