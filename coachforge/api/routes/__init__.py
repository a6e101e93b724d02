"""API routes module."""
from coachforge.api.routes.conversations import router as conversations_router
from coachforge.api.routes.generation import router as generation_router
from coachforge.api.routes.health import router as health_router
from coachforge.api.routes.jobs import router as jobs_router

__all__ = [
    "conversations_router",
    "generation_router",
    "health_router",
    "jobs_router",
]
