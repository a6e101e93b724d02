"""In-memory stand-ins for the completion client and repositories."""
import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from coachforge.models.enums import JobStatus


class FakeCompletionClient:
    """Replays scripted replies in call order.

    ``structured`` items are ``(output, tokens)`` tuples or exceptions to
    raise. ``streams`` and ``tool_runs`` are lists of event lists, one per call.
    """

    def __init__(self, structured=None, streams=None, tool_runs=None):
        self.structured = list(structured or [])
        self.streams = list(streams or [])
        self.tool_runs = list(tool_runs or [])
        self.calls: list[dict[str, Any]] = []

    async def complete_structured(self, system, user, schema, *, model=None, max_tokens=None, temperature=0.4):
        self.calls.append({"system": system, "user": user, "schema": schema, "model": model})
        reply = self.structured.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream_text(self, system, messages, *, model=None, max_tokens=None):
        self.calls.append({"system": system, "messages": messages, "model": model})
        for event in self.streams.pop(0):
            if isinstance(event, Exception):
                raise event
            yield event

    async def run_tools(self, system, messages, tools, executor, *, model=None, max_tokens=None, max_rounds=None):
        self.calls.append({"system": system, "messages": messages, "tools": tools, "model": model})
        for event in self.tool_runs.pop(0):
            if callable(event):
                # Deferred events run the executor, like a real tool round
                event = await event(executor)
            yield event


@dataclass
class FakeUser:
    id: str
    first_name: str
    last_name: str = ""
    email: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class FakePlatform:
    def __init__(self, exercises=None, profiles=None, users=None, progress=None, assessments=None):
        self.exercises = exercises or []
        self.profiles = profiles or {}
        self.users = {u.id: u for u in users or []}
        # (user_id, exercise_id) -> sessions, newest first
        self.progress = progress or {}
        self.assessments = assessments or {}

    async def list_clients(self, limit: int = 500):
        return list(self.users.values())

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_client_profile(self, user_id):
        return self.profiles.get(user_id)

    async def list_exercises(self):
        return list(self.exercises)

    async def get_exercise(self, exercise_id):
        return next((e for e in self.exercises if str(e["id"]) == exercise_id), None)

    async def exercise_history(self, user_id, exercise_id, limit: int = 20):
        return self.progress.get((user_id, exercise_id), [])[:limit]

    async def related_exercise_history(self, user_id, movement_pattern, exclude_exercise_id, limit: int = 10):
        names = {
            str(e["id"]): e["name"] for e in self.exercises
            if e.get("movement_pattern") == movement_pattern and str(e["id"]) != exclude_exercise_id
        }
        return [
            {**entry, "exercise_name": names[exercise_id]}
            for (owner, exercise_id), entries in self.progress.items()
            if owner == user_id and exercise_id in names
            for entry in entries
        ][:limit]

    async def latest_assessment(self, user_id):
        assessment = self.assessments.get(user_id)
        if isinstance(assessment, Exception):
            raise assessment
        return assessment

    async def clients_created_since(self, since):
        return list(self.users.values())

    async def count_clients(self):
        return len(self.users)

    async def program_assignment_stats(self):
        return [("Strength Block", 3, 2)]

    async def generation_stats(self, limit: int = 500):
        return {"total": 4, "completed": 3, "failed": 1, "tokens": 12500}


class FakePrograms:
    def __init__(self, fail_assign: bool = False):
        self.drafts = []
        self.assignments = []
        self.fail_assign = fail_assign

    async def save(self, draft):
        self.drafts.append(draft)
        return f"program-{len(self.drafts)}"

    async def assign(self, program_id, client_id, assigned_by, total_weeks, start_date=None):
        if self.fail_assign:
            raise RuntimeError("assignment table locked")
        self.assignments.append((program_id, client_id, assigned_by, total_weeks))
        return f"assignment-{len(self.assignments)}"


class FakeGenerationLogs:
    def __init__(self):
        self.records: list[dict[str, Any]] = []

    async def record(self, **fields):
        self.records.append(fields)


@dataclass
class StoredMessage:
    id: str
    feature: str
    role: str
    content: str
    meta: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None


class FakeConversations:
    def __init__(self, fail_saves: bool = False):
        self.messages: dict[str, StoredMessage] = {}
        self.saved: list[dict[str, Any]] = []
        self.feedback: list[dict[str, Any]] = []
        self.outcomes: list[dict[str, Any]] = []
        self.matches = []
        self.ratings: dict[str, float] = {}
        self.fail_saves = fail_saves
        self._ids = itertools.count(1)

    async def save(self, **fields):
        if self.fail_saves:
            raise RuntimeError("database unavailable")
        message_id = f"msg-{next(self._ids)}"
        self.saved.append(fields)
        self.messages[message_id] = StoredMessage(
            id=message_id,
            feature=fields["feature"],
            role=fields["role"],
            content=fields["content"],
            meta=fields.get("metadata") or {},
        )
        return message_id

    async def get(self, message_id):
        return self.messages.get(message_id)

    async def update_embedding(self, message_id, embedding):
        self.messages[message_id].embedding = embedding

    async def search_similar(self, embedding, feature, *, exclude_session=None, threshold=0.5, limit=2):
        return self.matches[:limit]

    async def average_ratings(self, message_ids):
        return {i: r for i, r in self.ratings.items() if i in message_ids}

    async def add_feedback(self, **fields):
        self.feedback.append(fields)
        return f"feedback-{len(self.feedback)}"

    async def record_outcome(self, **fields):
        self.outcomes.append(fields)
        return f"outcome-{len(self.outcomes)}"


class FakeEmbedder:
    def __init__(self, vector=None, error: Exception | None = None, delay: float = 0):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.error = error
        self.delay = delay
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.vector


@dataclass
class FakeJob:
    id: str
    job_type: str
    input: dict[str, Any]
    user_id: str = "coach-1"
    status: str = JobStatus.PENDING.value
    chunk_count: int = 0
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class FakeChunk:
    job_id: str
    index: int
    chunk_type: str
    data: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class FakeJobs:
    """Mirrors JobRepository's conditional updates on plain objects."""

    TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)

    def __init__(self):
        self.jobs: dict[str, FakeJob] = {}
        self.chunks: list[FakeChunk] = []
        self._ids = itertools.count(1)

    async def create(self, job_type, input, user_id):
        job = FakeJob(id=f"job-{next(self._ids)}", job_type=job_type.value, input=input, user_id=user_id)
        self.jobs[job.id] = job
        return job

    async def get(self, job_id, user_id=None):
        job = self.jobs.get(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            return None
        return job

    async def claim(self, job_id, to_status):
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING.value:
            return None
        job.status = to_status.value
        return job

    def _reserve(self, job_id):
        job = self.jobs[job_id]
        if job.status in self.TERMINAL:
            return None
        job.chunk_count += 1
        return job.chunk_count - 1

    async def append_chunk(self, job_id, chunk_type, data):
        index = self._reserve(job_id)
        if index is None:
            return None
        self.chunks.append(FakeChunk(job_id, index, chunk_type.value, data))
        return index

    async def finish(self, job_id, status, chunk_type, data, result=None, error=None):
        index = self._reserve(job_id)
        if index is None:
            return None
        job = self.jobs[job_id]
        job.status, job.result, job.error = status.value, result, error
        self.chunks.append(FakeChunk(job_id, index, chunk_type.value, data))
        return index

    async def list_chunks(self, job_id, after=-1):
        return [c for c in self.chunks if c.job_id == job_id and c.index > after]

    def types(self, job_id) -> list[str]:
        return [c.chunk_type for c in self.chunks if c.job_id == job_id]
