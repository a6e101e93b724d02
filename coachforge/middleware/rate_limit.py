from fastapi import Request, Response, status
from limits import parse
from limits.storage import storage_from_string
from limits.aio.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from coachforge.config.settings import get_settings
from coachforge.core.exceptions import RateLimitError

USER_HEADER = "X-User-Id"

settings = get_settings()


def user_or_address(request: Request) -> str:
    return request.headers.get(USER_HEADER) or get_remote_address(request)


limiter = Limiter(
    key_func=user_or_address,
    default_limits=settings.http_default_limits,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    return Response(
        content='{"error": "Rate limit exceeded"}',
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        media_type="application/json"
    )


class UserRateLimiter:
    """Per-user moving-window limits for the AI surfaces.

    Checked before a job is created so a rejected request leaves no job row.
    """

    def __init__(self, storage_uri: str | None = None, limits: dict[str, str] | None = None):
        self.storage = storage_from_string(storage_uri or settings.rate_limit_storage_uri)
        self.strategy = MovingWindowRateLimiter(self.storage)
        self.limits = {
            surface: parse(value)
            for surface, value in (limits or {
                "admin_chat": settings.admin_chat_rate_limit,
                "program_chat": settings.program_chat_rate_limit,
                "program_generation": settings.program_generation_rate_limit,
                "ai_coach": settings.ai_coach_rate_limit,
            }).items()
        }

    async def check(self, surface: str, user_id: str):
        """Consume one request for ``user_id`` or raise ``RateLimitError``."""
        limit = self.limits[surface]
        if not await self.strategy.hit(limit, surface, user_id):
            raise RateLimitError(surface, str(limit))

    async def reset(self):
        await self.storage.reset()
