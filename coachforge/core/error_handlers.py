import logging
from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.responses import JSONResponse
from limits import parse

from coachforge.core.exceptions import (
    AuthorizationError,
    BusinessRuleError,
    ConflictError,
    DomainError,
    GenerationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger(__name__)


ERROR_STATUS_MAP: dict[type[DomainError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    BusinessRuleError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    RateLimitError: status.HTTP_429_TOO_MANY_REQUESTS,
    GenerationError: status.HTTP_502_BAD_GATEWAY,
}


def retry_after_seconds(exc: RateLimitError) -> int | None:
    """Window length of the exceeded limit, for the ``Retry-After`` header."""
    limit = exc.details.get("limit")
    if not limit:
        return None
    try:
        return parse(limit).get_expiry()
    except ValueError:
        return None


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = ERROR_STATUS_MAP.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    request_id = getattr(request.state, "request_id", None)

    if status_code >= 500:
        logger.error(f"Request {request_id} failed with {exc.code}: {exc.message}")

    headers = {}
    if isinstance(exc, RateLimitError):
        retry_after = retry_after_seconds(exc)
        if retry_after:
            headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=status_code,
        headers=headers or None,
        content={
            "data": None,
            "meta": {
                "request_id": request_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            "errors": [
                {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                }
            ],
        },
    )
