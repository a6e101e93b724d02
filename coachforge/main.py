"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from coachforge.config.settings import get_settings
from coachforge.core.error_handlers import domain_error_handler
from coachforge.core.exceptions import DomainError
from coachforge.core.logging import configure_logging, get_logger
from coachforge.db.database import async_session_maker, close_engine, init_db
from coachforge.llm import cleanup_llm_provider, get_completion_client, get_embedding_provider
from coachforge.middleware import RequestIDMiddleware, limiter, rate_limit_exceeded_handler
from coachforge.services.container import ServiceContainer

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    await init_db()

    container = ServiceContainer(
        async_session_maker,
        get_completion_client(),
        get_embedding_provider(),
    )
    app.state.container = container
    logger.info("Service started", app=container.settings.app_name)

    yield

    # Let queued side effects finish before the providers close.
    await container.outbox.drain()
    await cleanup_llm_provider()
    try:
        await close_engine()
    except Exception as e:
        logger.warning("Failed to close database engine", error=str(e))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Multi-agent training program generation with streaming AI jobs",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(DomainError, domain_error_handler)

    from coachforge.api.routes import (
        conversations_router,
        generation_router,
        health_router,
        jobs_router,
    )

    app.include_router(generation_router, prefix="/programs", tags=["Programs"])
    app.include_router(jobs_router, prefix="/jobs", tags=["AI Jobs"])
    app.include_router(conversations_router, prefix="/conversations", tags=["Feedback"])
    app.include_router(health_router, tags=["Health"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("coachforge.main:app", host="0.0.0.0", port=8000, reload=True)
