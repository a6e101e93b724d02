"""Background AI jobs: runtime, handlers and best-effort side effects."""
from coachforge.services.jobs.outbox import BestEffortOutbox
from coachforge.services.jobs.runtime import ChunkLog, JobRuntime

__all__ = ["BestEffortOutbox", "ChunkLog", "JobRuntime"]
