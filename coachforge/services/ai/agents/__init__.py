"""Generative pipeline steps, each a model call plus a deterministic guard."""
from coachforge.services.ai.agents.base import Agent, AgentResult
from coachforge.services.ai.agents.exercise_selector import ExerciseSelector, SubstitutePicker
from coachforge.services.ai.agents.profile_analyzer import ProfileAnalyzer
from coachforge.services.ai.agents.program_architect import ProgramArchitect

__all__ = [
    "Agent",
    "AgentResult",
    "ExerciseSelector",
    "ProfileAnalyzer",
    "ProgramArchitect",
    "SubstitutePicker",
]
