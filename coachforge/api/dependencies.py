"""Shared dependencies for API routes."""
from fastapi import Header, Request

from coachforge.core.exceptions import AuthorizationError
from coachforge.middleware.rate_limit import USER_HEADER
from coachforge.services.container import ServiceContainer


async def get_user_id(x_user_id: str | None = Header(None, alias=USER_HEADER)) -> str:
    """Caller identity, set by the platform gateway in front of this service."""
    if not x_user_id:
        raise AuthorizationError(f"Missing {USER_HEADER} header", code="AUTH_001")
    return x_user_id


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
