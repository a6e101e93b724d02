import pytest

from coachforge.core.exceptions import RateLimitError
from coachforge.middleware.rate_limit import UserRateLimiter


@pytest.fixture
def limiter():
    return UserRateLimiter("async+memory://", {"program_chat": "2/minute", "admin_chat": "1/minute"})


@pytest.mark.asyncio
async def test_limit_is_enforced_per_surface(limiter):
    await limiter.check("program_chat", "coach-1")
    await limiter.check("program_chat", "coach-1")

    with pytest.raises(RateLimitError) as exc_info:
        await limiter.check("program_chat", "coach-1")

    assert exc_info.value.code == "RL_001"
    assert exc_info.value.details["surface"] == "program_chat"

    # Other surfaces have their own window
    await limiter.check("admin_chat", "coach-1")


@pytest.mark.asyncio
async def test_users_are_counted_separately(limiter):
    await limiter.check("admin_chat", "coach-1")
    await limiter.check("admin_chat", "coach-2")

    with pytest.raises(RateLimitError):
        await limiter.check("admin_chat", "coach-1")


@pytest.mark.asyncio
async def test_reset_clears_windows(limiter):
    await limiter.check("admin_chat", "coach-1")
    await limiter.reset()

    await limiter.check("admin_chat", "coach-1")
