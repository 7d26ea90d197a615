"""Security utilities exposed for convenience."""

from .auth import (
    PRIVILEGED_ROLES,
    TokenValidationError,
    caller_from_payload,
    decode_access_token,
    get_caller,
)
from .tokens import (
    JWTSettings,
    TokenConfigurationError,
    create_access_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "PRIVILEGED_ROLES",
    "TokenConfigurationError",
    "TokenValidationError",
    "caller_from_payload",
    "create_access_token",
    "decode_access_token",
    "get_caller",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
