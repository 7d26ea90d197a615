"""Helpers for issuing signed access tokens."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

import jwt


class TokenConfigurationError(RuntimeError):
    """Raised when token configuration is missing or invalid."""


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Runtime configuration for issuing access tokens."""

    secret: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    access_token_ttl_seconds: int = 900  # 15 minutes


@lru_cache(maxsize=1)
def get_jwt_settings() -> JWTSettings:
    """Load token settings from the environment."""

    secret = os.getenv("TOKEN_SECRET")
    issuer = os.getenv("TOKEN_ISSUER")
    audience = os.getenv("TOKEN_AUDIENCE")
    if not secret or not issuer or not audience:
        raise TokenConfigurationError("TOKEN_SECRET, TOKEN_ISSUER and TOKEN_AUDIENCE must be set.")
    return JWTSettings(
        secret=secret,
        issuer=issuer,
        audience=audience,
        algorithm=os.getenv("TOKEN_ALGORITHM", "HS256"),
        access_token_ttl_seconds=int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "900")),
    )


def reset_jwt_settings_cache() -> None:
    """Clear cached JWT settings; useful in tests when env vars change."""

    get_jwt_settings.cache_clear()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def create_access_token(
    user_id: str,
    roles: Iterable[str] = (),
    *,
    email: str | None = None,
    settings: JWTSettings | None = None,
) -> tuple[str, dt.datetime]:
    """Issue a signed JWT access token for ``user_id``."""

    settings = settings or get_jwt_settings()
    now = _utcnow()
    expires_at = now + dt.timedelta(seconds=settings.access_token_ttl_seconds)
    payload: dict[str, Any] = {
        "user_id": str(user_id),
        "roles": sorted({role for role in roles if role}),
        "iss": settings.issuer,
        "aud": settings.audience,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "type": "access",
    }
    if email:
        payload["email"] = email
    token = jwt.encode(payload, settings.secret, algorithm=settings.algorithm)
    return str(token), expires_at


__all__ = [
    "JWTSettings",
    "TokenConfigurationError",
    "create_access_token",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
