"""Tool catalogue and executor for the program-building chat."""
import logging
from typing import Any

from pydantic import BaseModel

from coachforge.llm.base import ToolSpec
from coachforge.models.enums import GenerationTrigger
from coachforge.repositories.platform_repository import PlatformRepository
from coachforge.schemas.generation import GenerationRequest
from coachforge.schemas.tools import (
    ClientRef,
    GenerateProgramArgs,
    GenerateProgramResult,
    ListClientsArgs,
    ListClientsResult,
    LookupClientProfileArgs,
    LookupClientProfileResult,
)
from coachforge.services.ai.orchestrator import ProgramOrchestrator

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = {
    "goals": "goals",
    "experience_level": "experience_level",
    "training_years": "training_years",
    "movement_confidence": "movement_confidence",
    "sessions_per_week": "preferred_training_days",
    "session_minutes": "preferred_session_minutes",
    "preferred_day_names": "preferred_day_names",
    "time_efficiency": "time_efficiency_preference",
    "preferred_techniques": "preferred_techniques",
    "available_equipment": "available_equipment",
    "injuries": "injuries",
    "injury_details": "injury_details",
    "sport": "sport",
    "gender": "gender",
    "date_of_birth": "date_of_birth",
    "sleep_hours": "sleep_hours",
    "stress_level": "stress_level",
    "occupation_activity_level": "occupation_activity_level",
    "exercise_likes": "exercise_likes",
    "exercise_dislikes": "exercise_dislikes",
    "training_background": "training_background",
    "additional_notes": "additional_notes",
}


def _spec(name: str, description: str, args: type[BaseModel]) -> ToolSpec:
    return ToolSpec(name=name, description=description, parameters=args.model_json_schema())


TOOL_CATALOGUE: list[ToolSpec] = [
    _spec(
        "list_clients",
        "List all clients on the platform with their IDs and names. Call this when you need "
        "to find a client or see who is available.",
        ListClientsArgs,
    ),
    _spec(
        "lookup_client_profile",
        "Look up a specific client's detailed profile including goals, experience, equipment, "
        "injuries, and training preferences. Call this after identifying a client to get their "
        "full details before generating a program.",
        LookupClientProfileArgs,
    ),
    _spec(
        "generate_program",
        "Generate a full training program for a client. Call this once you have gathered "
        "enough information about the client's needs.",
        GenerateProgramArgs,
    ),
]

TOOL_ARGS: dict[str, type[BaseModel]] = {
    "list_clients": ListClientsArgs,
    "lookup_client_profile": LookupClientProfileArgs,
    "generate_program": GenerateProgramArgs,
}


class ProgramChatTools:
    """Executes catalogue tools on behalf of one coach.

    Errors propagate; the tool loop turns them into error-flagged results.
    """

    def __init__(self, platform: PlatformRepository, orchestrator: ProgramOrchestrator, requested_by: str):
        self.platform = platform
        self.orchestrator = orchestrator
        self.requested_by = requested_by

    async def execute(self, name: str, arguments: dict[str, Any]) -> BaseModel:
        if name not in TOOL_ARGS:
            raise ValueError(f"Unknown tool: {name}")
        args = TOOL_ARGS[name].model_validate(arguments or {})
        logger.info(f"Executing tool {name}")

        if name == "list_clients":
            return await self.list_clients()
        if name == "lookup_client_profile":
            return await self.lookup_client_profile(args)
        return await self.generate_program(args)

    async def list_clients(self) -> ListClientsResult:
        users = await self.platform.list_clients()
        clients = [ClientRef(id=u.id, name=u.full_name, email=u.email) for u in users]
        plural = "" if len(clients) == 1 else "s"
        return ListClientsResult(clients=clients, summary=f"Found {len(clients)} client{plural}.")

    async def lookup_client_profile(self, args: LookupClientProfileArgs) -> LookupClientProfileResult:
        profile = await self.platform.get_client_profile(args.client_id)
        if profile is None:
            return LookupClientProfileResult(
                found=False,
                client_id=args.client_id,
                client_name=args.client_name,
                summary=f"No questionnaire data found for {args.client_name}.",
            )
        return LookupClientProfileResult(
            found=True,
            client_id=args.client_id,
            client_name=args.client_name,
            summary=f"Loaded profile for {args.client_name}.",
            profile={key: profile.get(column) for key, column in _PROFILE_FIELDS.items()},
        )

    async def generate_program(self, args: GenerateProgramArgs) -> GenerateProgramResult:
        request = GenerationRequest(**args.model_dump())
        result = await self.orchestrator.generate(
            request, self.requested_by, trigger=GenerationTrigger.PROGRAM_CHAT,
        )
        status = "passed validation" if result.validation.passed else "saved with validation issues"
        return GenerateProgramResult(
            success=True,
            program_id=result.program_id,
            validation_pass=result.validation.passed,
            duration_ms=result.duration_ms,
            summary=f"Program created successfully and {status} ({result.duration_ms}ms).",
        )
