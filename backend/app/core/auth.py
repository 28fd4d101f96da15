"""
NaviStream Authentication Module

Resolves the caller of each request from an HS256 bearer token and exposes it
as a request-scoped RequestContext. Nothing about the authenticated user is
kept in process-wide state: every request verifies its own token.

- create_access_token: issue a token for a user id (scripts and tests)
- authenticate_request: verify a token and build a RequestContext
- get_request_context: FastAPI dependency used by every protected route

Any failure (missing header, bad signature, expired token, no user id claim)
surfaces as ``401 {"error": "Please authenticate"}`` before the route body,
and therefore before upload admission, runs.

Usage:
    ```python
    from fastapi import Depends
    from app.core.auth import RequestContext, get_request_context

    @router.get("/videos/mine")
    async def my_videos(ctx: RequestContext = Depends(get_request_context)):
        return await service.list_by_owner(ctx.user_id)
    ```
"""

import logging

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

from app.config import Settings, get_settings


logger = logging.getLogger(__name__)

AUTH_ERROR_MESSAGE = "Please authenticate"

# auto_error=False so a missing header is reported with our own 401 body
security = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication (HS256).",
    auto_error=False,
)


class RequestContext(BaseModel):
    """Identity of the caller, resolved once per request."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    request_id: str = Field(default_factory=lambda: uuid4().hex)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=AUTH_ERROR_MESSAGE,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(
    user_id: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """
    Create a signed access token for ``user_id``.

    Token claims:
    - sub: User ID (subject)
    - exp: Expiration timestamp (jwt_expiration_hours from now by default)
    - iat: Issued at timestamp

    Args:
        user_id: The user's unique identifier.
        settings: Settings providing secret_key, jwt_algorithm and lifetime.
        expires_delta: Optional override of the token lifetime.
        extra_claims: Additional claims merged into the payload.

    Returns:
        str: The encoded JWT token string.
    """
    settings = settings or get_settings()
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))

    payload: dict[str, Any] = {"sub": user_id, "iat": now, "exp": expire}
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def authenticate_request(
    token: str | None,
    settings: Settings | None = None,
    request_id: str | None = None,
) -> RequestContext:
    """
    Verify a bearer token and resolve the caller.

    The user id is read from ``sub``, falling back to the ``userId`` claim
    issued by older clients.

    Args:
        token: Raw token string (without the ``Bearer`` prefix).
        settings: Settings providing the verification key.
        request_id: Id of the current request, propagated into the context.

    Returns:
        RequestContext: The authenticated caller.

    Raises:
        HTTPException: 401 with "Please authenticate" on any failure.
    """
    if not token:
        raise _unauthorized()

    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning("Token validation failed: %s", e)
        raise _unauthorized() from e

    user_id = payload.get("sub") or payload.get("userId")
    if not user_id or not isinstance(user_id, str):
        logger.warning("Token carries no user id claim")
        raise _unauthorized()

    if request_id:
        return RequestContext(user_id=user_id, request_id=request_id)
    return RequestContext(user_id=user_id)


async def get_request_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> RequestContext:
    """
    FastAPI dependency resolving the authenticated caller.

    Reuses the request id assigned by the request logging middleware so log
    lines and the ``X-Request-ID`` header agree.
    """
    token = credentials.credentials if credentials else None
    request_id = getattr(request.state, "request_id", None)
    return authenticate_request(token, settings=settings, request_id=request_id)
