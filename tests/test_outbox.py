"""Tests for best-effort side effect delivery."""
import pytest

from coachforge.services.jobs.outbox import BestEffortOutbox


class Flaky:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("database unavailable")
        return "saved"


@pytest.fixture
def delays():
    return []


@pytest.fixture
def outbox(settings, delays):
    async def sleep(delay):
        delays.append(delay)

    settings.outbox_base_delay = 0.5
    return BestEffortOutbox(settings, sleep=sleep)


@pytest.mark.asyncio
async def test_retries_then_delivers(outbox, delays):
    effect = Flaky(failures=2)

    delivered = await outbox.submit("conversation_turn", effect)

    assert delivered is True
    assert effect.calls == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_dropped_after_max_attempts(outbox, delays):
    effect = Flaky(failures=10)

    delivered = await outbox.submit("generation_log", effect)

    assert delivered is False
    assert effect.calls == 3
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_drain_waits_for_pending_effects(outbox):
    effects = [Flaky(failures=0), Flaky(failures=1), Flaky(failures=10)]
    for n, effect in enumerate(effects):
        outbox.submit(f"effect-{n}", effect)

    assert outbox.pending == 3
    await outbox.drain()

    assert outbox.pending == 0
    assert [e.calls for e in effects] == [1, 2, 3]
