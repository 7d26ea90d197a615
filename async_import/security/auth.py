"""Bearer token validation and the FastAPI dependency resolving the caller."""

from __future__ import annotations

from typing import Any

import jwt
from fastapi import HTTPException, Request, status

from ..imports.models import Caller
from .tokens import JWTSettings, TokenConfigurationError, get_jwt_settings

PRIVILEGED_ROLES = frozenset({"admin"})


class TokenValidationError(ValueError):
    """Raised when the provided token cannot be validated."""


def decode_access_token(token: str, settings: JWTSettings | None = None) -> dict[str, Any]:
    """Decode an access token issued by :func:`create_access_token`.

    Raises :class:`TokenConfigurationError` when the token settings are
    incomplete and :class:`TokenValidationError` for a bad signature, foreign
    audience or issuer, an expired token, or a payload without ``user_id``.
    """

    settings = settings or get_jwt_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            audience=settings.audience,
            issuer=settings.issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenValidationError("Access token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenValidationError("Access token is invalid.") from exc

    if not payload.get("user_id"):
        raise TokenValidationError("Access token payload must include 'user_id'.")
    if payload.get("type", "access") != "access":
        raise TokenValidationError("Token must be an access token.")
    return payload


def caller_from_payload(payload: dict[str, Any] | None) -> Caller:
    """Build the :class:`Caller` for a decoded token (or for no token at all)."""

    if payload is None:
        return Caller()
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Caller(
        identity=str(payload["user_id"]),
        is_privileged=bool(PRIVILEGED_ROLES.intersection(role for role in roles if role)),
    )


async def get_caller(request: Request) -> Caller:
    """Resolve the caller from the ``Authorization`` header.

    Requests without the header get an anonymous caller; the import service
    decides what they may do. A malformed or invalid header is rejected with
    ``401``, broken token configuration with ``500``.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        return Caller()

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        payload = decode_access_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
    return caller_from_payload(payload)


__all__ = [
    "PRIVILEGED_ROLES",
    "TokenValidationError",
    "caller_from_payload",
    "decode_access_token",
    "get_caller",
]
