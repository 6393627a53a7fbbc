"""Authentication middleware for FastAPI.

Supports multiple authentication methods (in priority order):
1. X-Dev-Bypass header (development only, requires explicit opt-in)
2. Bearer JWT token in the Authorization header
3. JWT in the auth_token cookie (browser requests)

Tokens are HS256 JWTs signed with JWT_SECRET; the user id is read from
``userId`` (falling back to ``sub``).

SECURITY NOTE: Dev bypass requires BOTH:
  - ENVIRONMENT=development
  - DEV_BYPASS_ENABLED=true
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from edusense.core.config import get_settings

logger = logging.getLogger(__name__)

DEV_USER_ID = "00000000-0000-0000-0000-000000000001"

# Paths that don't require authentication
PUBLIC_PATHS = {
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/health/live",
    "/health/ready",
    "/health/startup",
    "/metrics",
}


@dataclass
class UserClaims:
    """Claims of an authenticated user."""

    sub: str  # User ID
    email: str | None = None
    name: str | None = None
    raw_claims: dict = field(default_factory=dict)


class TokenValidationError(Exception):
    """Raised when a token cannot be verified."""


def is_public_path(path: str) -> bool:
    """Check if a path is public (no auth required)."""
    if path in PUBLIC_PATHS:
        return True
    return path.startswith("/metrics/")


def get_bearer_token_from_header(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def validate_token(token: str) -> UserClaims:
    """Verify signature and expiry, then map claims to UserClaims."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise TokenValidationError("Invalid or expired token") from e

    user_id = claims.get("userId") or claims.get("sub")
    if not user_id:
        raise TokenValidationError("Token has no user id")

    return UserClaims(
        sub=str(user_id),
        email=claims.get("email"),
        name=claims.get("name"),
        raw_claims=claims,
    )


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates JWTs and sets request.state.user.

    For public paths and CORS preflight requests, skips authentication.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()

        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        # 1. Explicit dev bypass header (requires BOTH conditions)
        dev_bypass_allowed = (
            settings.environment == "development"
            and settings.dev_bypass_enabled is True
        )

        if dev_bypass_allowed and request.headers.get("X-Dev-Bypass") == "true":
            logger.warning(
                "DEV BYPASS ACTIVATED - request authenticated via X-Dev-Bypass header",
                extra={
                    "security_event": "dev_bypass",
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            request.state.user = UserClaims(
                sub=DEV_USER_ID, email="dev@example.com", name="Developer"
            )
            return await call_next(request)

        # 2. Bearer token, then 3. cookie
        token = get_bearer_token_from_header(request.headers.get("Authorization"))
        if token is None:
            token = request.cookies.get(settings.auth_cookie_name)

        if not token:
            return _unauthorized("Authentication required")

        try:
            request.state.user = validate_token(token)
        except TokenValidationError as e:
            return _unauthorized(str(e))

        return await call_next(request)


async def get_current_user(request: Request) -> UserClaims:
    """FastAPI dependency to get the current authenticated user."""
    user = getattr(request.state, "user", None)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user
