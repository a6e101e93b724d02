import pytest

from coachforge.config.settings import Settings


@pytest.fixture
def settings():
    """Settings with every delay zeroed so retry paths run instantly."""
    return Settings(
        llm_retry_base_delay=0,
        outbox_base_delay=0,
        rag_timeout_seconds=0.2,
        admin_context_timeout_seconds=0.2,
    )
