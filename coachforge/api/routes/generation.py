"""Synchronous program generation."""
from fastapi import APIRouter, Depends

from coachforge.api.dependencies import get_container, get_user_id
from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.program import OrchestrationResult
from coachforge.services.container import ServiceContainer

router = APIRouter()


@router.post("/generate", response_model=OrchestrationResult)
async def generate_program(
    payload: GenerationRequest,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Run the full generation pipeline and return once the program is saved.

    Takes 30-90 seconds. The returned validation result may have failed when
    every repair attempt still had errors; the program is saved regardless.
    """
    await container.rate_limiter.check("program_generation", user_id)
    return await container.orchestrator.generate(payload, user_id)
