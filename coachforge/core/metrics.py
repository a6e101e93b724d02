from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest
from prometheus_client.multiprocess import MultiProcessCollector
import os


registry = CollectorRegistry()
if os.getenv('prometheus_multiproc_dir'):
    MultiProcessCollector(registry)


generation_requests_total = Counter(
    'generation_requests_total',
    'Program generation requests by outcome',
    ['outcome'],
    registry=registry
)

generation_duration_seconds = Histogram(
    'generation_duration_seconds',
    'End-to-end program generation duration in seconds',
    buckets=[5, 10, 20, 30, 45, 60, 90, 120, 180, 300],
    registry=registry
)

generation_retries_total = Counter(
    'generation_retries_total',
    'Repair-loop retries by restarted step',
    ['step'],
    registry=registry
)

llm_tokens_total = Counter(
    'llm_tokens_total',
    'Completion API tokens consumed',
    ['step'],
    registry=registry
)

llm_transient_retries_total = Counter(
    'llm_transient_retries_total',
    'Completion API calls retried after a transient provider error',
    registry=registry
)

validation_issues_total = Counter(
    'validation_issues_total',
    'Validation issues produced by the validation engine',
    ['type', 'category'],
    registry=registry
)

job_chunks_total = Counter(
    'job_chunks_total',
    'Chunks appended to AI job logs',
    ['job_type', 'chunk_type'],
    registry=registry
)

outbox_events_total = Counter(
    'outbox_events_total',
    'Best-effort side effects by name and outcome',
    ['name', 'outcome'],
    registry=registry
)


def render_metrics() -> bytes:
    """Serialize the registry in Prometheus text format."""
    return generate_latest(registry)
