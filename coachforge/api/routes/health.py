"""Liveness, provider health and Prometheus metrics."""
from fastapi import APIRouter, Depends, Response

from coachforge.api.dependencies import get_container
from coachforge.config.settings import get_settings
from coachforge.core.metrics import render_metrics
from coachforge.services.container import ServiceContainer

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": get_settings().app_name}


@router.get("/health/llm")
async def llm_health_check(container: ServiceContainer = Depends(get_container)):
    """Check LLM provider availability."""
    settings = container.settings
    is_healthy = await container.client.provider.health_check()
    return {
        "status": "healthy" if is_healthy else "unhealthy",
        "provider": settings.llm_provider,
        "model": settings.openai_model,
    }


@router.get("/metrics")
async def metrics():
    return Response(
        content=render_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
