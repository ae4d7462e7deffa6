# =============================================================================
# app/dependencies.py - Shared Dependencies
# =============================================================================
# FastAPI dependency injection for shared resources.
# These are injected into route handlers using Depends().
# =============================================================================

from typing import Annotated, Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.auth import AuthUser, get_current_user
from lib.database import get_db
from lib.rate_limiter import get_rate_limiter

# Type aliases for dependency injection
DbDep = Annotated[Session, Depends(get_db)]
UserDep = Annotated[AuthUser, Depends(get_current_user)]


def get_client_ip(request: Request) -> str:
    """
    Best-effort client address.

    Honors the first X-Forwarded-For hop when running behind a proxy.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def limit_by_ip(action: str) -> Callable[[Request], None]:
    """
    Rate limit an unauthenticated endpoint per client IP.

    Usage:
        @router.post("/signin", dependencies=[Depends(limit_by_ip("signin"))])
    """

    def dependency(request: Request) -> None:
        get_rate_limiter().check(action, get_client_ip(request))

    return dependency


def limit_by_user(action: str) -> Callable[..., None]:
    """Rate limit an authenticated endpoint per user id."""

    def dependency(user: AuthUser = Depends(get_current_user)) -> None:
        get_rate_limiter().check(action, user.id)

    return dependency
