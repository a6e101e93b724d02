"""Typed arguments and results for the program-chat tool catalogue.

Each tool has an argument model (its JSON schema is what the model sees) and
a result model tagged by tool name. ``ToolFailure`` is returned instead of a
result when a tool raises, so the conversation can continue.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from coachforge.schemas.generation import Goal
from coachforge.schemas.program import Periodization, SplitType


# ─── Arguments ──────────────────────────────────────────────────────────────

class ListClientsArgs(BaseModel):
    pass


class LookupClientProfileArgs(BaseModel):
    client_id: str = Field(description="The id of the client")
    client_name: str = Field(description="The name of the client (for display)")


class GenerateProgramArgs(BaseModel):
    client_id: str | None = Field(default=None, description="The id of the client (null for generic programs)")
    goals: list[Goal] = Field(min_length=1, description="Training goals")
    duration_weeks: int = Field(ge=1, le=52, description="Program length in weeks")
    sessions_per_week: int = Field(ge=1, le=7, description="Training sessions per week")
    session_minutes: int | None = Field(default=None, description="Session duration in minutes")
    split_type: SplitType | None = Field(default=None, description="Split type (optional)")
    periodization: Periodization | None = Field(default=None, description="Periodization type (optional)")
    equipment_override: list[str] | None = Field(default=None, description="Equipment list (optional)")
    additional_instructions: str | None = Field(default=None, description="Extra instructions (optional)")


# ─── Results ────────────────────────────────────────────────────────────────

class ClientRef(BaseModel):
    id: str
    name: str
    email: str | None = None


class ListClientsResult(BaseModel):
    tool: Literal["list_clients"] = "list_clients"
    clients: list[ClientRef]
    summary: str


class LookupClientProfileResult(BaseModel):
    tool: Literal["lookup_client_profile"] = "lookup_client_profile"
    found: bool
    client_id: str
    client_name: str
    summary: str
    profile: dict[str, Any] | None = None


class GenerateProgramResult(BaseModel):
    tool: Literal["generate_program"] = "generate_program"
    success: bool
    program_id: str | None = None
    validation_pass: bool | None = None
    duration_ms: int | None = None
    summary: str


ToolResult = Annotated[
    Union[ListClientsResult, LookupClientProfileResult, GenerateProgramResult],
    Field(discriminator="tool"),
]


class ToolFailure(BaseModel):
    tool: str
    error: str

    @property
    def summary(self) -> str:
        return self.error
