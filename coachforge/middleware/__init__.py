"""HTTP middleware and rate limiting."""
from coachforge.middleware.rate_limit import UserRateLimiter, limiter, rate_limit_exceeded_handler
from coachforge.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "UserRateLimiter",
    "limiter",
    "rate_limit_exceeded_handler",
]
