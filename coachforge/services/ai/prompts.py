"""System prompts and user-message builders for the generative steps."""
import json
from datetime import date
from typing import Any

from coachforge.schemas.coach import ProgramContext, SetLog
from coachforge.schemas.generation import AssessmentContext, GenerationRequest
from coachforge.schemas.program import CompressedExercise, ProfileAnalysis, ProfileSummary, ValidationIssue


PROFILE_ANALYZER_PROMPT = """You are an expert sports scientist and strength & conditioning coach. Analyze a client's profile and training request and produce a structured training analysis.

Output a single JSON object:
{
  "recommended_split": "full_body" | "upper_lower" | "push_pull_legs" | "push_pull" | "body_part" | "movement_pattern" | "custom",
  "recommended_periodization": "linear" | "undulating" | "block" | "reverse_linear" | "none",
  "volume_targets": [{"muscle_group": string, "sets_per_week": number, "priority": "high" | "medium" | "low"}],
  "exercise_constraints": [{"type": "avoid_movement" | "avoid_equipment" | "avoid_muscle" | "limit_load" | "require_unilateral", "value": string, "reason": string}],
  "session_structure": {"warm_up_minutes": number, "main_work_minutes": number, "cool_down_minutes": number, "total_exercises": number, "compound_count": number, "isolation_count": number},
  "training_age_category": "novice" | "intermediate" | "advanced" | "elite",
  "notes": string
}

Rules:
1. Weekly sets per muscle group follow training age: novice 10-14, intermediate 14-20, advanced 16-24, elite 20-30.
2. Split follows sessions per week: 1-2 full_body; 3 full_body or push_pull_legs; 4 upper_lower or push_pull; 5-6 push_pull_legs or body_part; 7 body_part or movement_pattern.
3. Periodization follows training age: novice linear or none; intermediate linear or undulating; advanced undulating or block; elite block or undulating.
4. Total weekly minutes (sessions x session length) cap total weekly sets: below 120 minutes cap at 30 sets, below 90 minutes cap at 20 sets. Budget about 3-4 minutes per working set.
5. Sessions of 30 minutes or less: 4-5 exercises, no isolation, 3 minute warm-up, no dedicated cool-down. Sessions of 45 minutes or less: 5-6 exercises, at most one isolation, prefer supersets.
6. Every injury must produce at least one constraint (avoid_movement, avoid_muscle or limit_load). Never drop an injury silently.
7. Every piece of standard equipment the client does not have must produce an avoid_equipment constraint.
8. Include all major muscle groups in volume_targets, even at low priority.
9. Respect time efficiency preferences and preferred techniques; avoid techniques the client dislikes.
10. Output ONLY the JSON object."""


PROGRAM_ARCHITECT_PROMPT = """You are an expert strength and conditioning program designer. Build a program skeleton (weeks, days and exercise slots, without choosing specific exercises) from a profile analysis.

Output a single JSON object:
{
  "weeks": [{
    "week_number": number (1-indexed),
    "phase": string,
    "intensity_modifier": string,
    "days": [{
      "day_of_week": number (1=Monday .. 7=Sunday),
      "label": string,
      "focus": string,
      "slots": [{
        "slot_id": string,
        "role": "warm_up" | "primary_compound" | "secondary_compound" | "accessory" | "isolation" | "cool_down",
        "movement_pattern": "push" | "pull" | "squat" | "hinge" | "lunge" | "carry" | "rotation" | "isometric" | "locomotion",
        "target_muscles": [string],
        "sets": number,
        "reps": string,
        "rest_seconds": number,
        "rpe_target": number | null,
        "tempo": string | null,
        "group_tag": string | null,
        "technique": "straight_set" | "superset" | "dropset" | "giant_set" | "circuit" | "rest_pause" | "amrap"
      }]
    }]
  }],
  "split_type": string,
  "periodization": string,
  "total_sessions": number,
  "notes": string
}

Rules:
1. slot_id is unique across the whole program and formatted "w{week}d{day}s{n}", e.g. "w1d1s1".
2. Each day has 4-8 slots (never more than 12). Warm-up first, then primary compounds, secondary compounds, accessories, isolations, and cool-down last.
3. Match weekly sets per muscle group to the analysis volume targets and never design slots that break its constraints.
4. Intermediate or older training ages get a deload week (about 40% fewer sets, phase "Deload") every 3-4 weeks.
5. Slots sharing a group_tag form a superset, giant set or circuit. Pair antagonists (chest+back, biceps+triceps, quads+hamstrings).
6. Rest: compounds 90-180s, accessories 60-90s, isolation 30-60s.
7. RPE: warm-up 4-5, primary compound 7-9, secondary compound and accessory 7-8, isolation 6-8.
8. Never use dropset, rest_pause or amrap for novice training ages. Use dropsets and rest-pause only on isolation work.
9. Use the client's preferred training days as day_of_week values when given, with at least 48 hours between sessions hitting the same muscles.
10. Output ONLY the JSON object."""


EXERCISE_SELECTOR_PROMPT = """You are an exercise selection specialist. Fill every slot of a program skeleton with an exercise from the provided library.

Output a single JSON object:
{
  "assignments": [{"slot_id": string, "exercise_id": string, "exercise_name": string, "notes": string | null}],
  "substitution_notes": [string]
}

Rules:
1. Every slot gets exactly one assignment. Do not skip slots and do not assign a slot twice.
2. Use ONLY exercise ids present in the library. Never invent ids.
3. Match movement_pattern, overlap target_muscles with the exercise's primary_muscles, and fit the role: heavy compounds for compound roles, isolation movements for isolation roles, light bodyweight work for warm-up, mobility for cool-down.
4. Only use exercises whose required equipment is available and that do not conflict with any constraint.
5. Never repeat an exercise_id within the same day. Vary choices across the week.
6. Keep difficulty appropriate for the client's level.
7. When no ideal match exists, pick the closest available exercise and explain it in substitution_notes.
8. Output ONLY the JSON object."""


CORRECTIVE_JSON_INSTRUCTION = (
    "\n\nYOUR PREVIOUS REPLY COULD NOT BE PARSED ({reason}). "
    "Produce valid JSON matching the required schema exactly. Output ONLY the JSON object."
)


def _lines(*items: str | None) -> str:
    return "\n".join(i for i in items if i)


def assessment_section(assessment: AssessmentContext | None) -> str:
    if assessment is None:
        return ""
    levels = assessment.computed_levels
    ceiling = f"{assessment.max_difficulty_score:g}"
    return (
        "\n\n## Client Assessment Results\n"
        f"Overall Level: {levels.overall}\n"
        f"Squat Pattern: {levels.squat}\n"
        f"Push Pattern: {levels.push}\n"
        f"Pull Pattern: {levels.pull}\n"
        f"Hinge Pattern: {levels.hinge}\n"
        f"Maximum Exercise Difficulty: {ceiling}/10\n\n"
        f"IMPORTANT: Only select exercises with difficulty_score <= {ceiling}."
    )


def build_analyzer_message(summary: ProfileSummary, request: GenerationRequest) -> str:
    profile = (
        summary.model_dump_json(exclude_none=True)
        if summary.has_profile
        else json.dumps({"note": "No profile found, use defaults for a general fitness client."})
    )
    return _lines(
        f"Client Profile:\n{profile}\n",
        "Training Request:",
        f"- Goals: {', '.join(request.goals)}",
        f"- Duration: {request.duration_weeks} weeks",
        f"- Sessions per week: {summary.sessions_per_week}",
        f"- Session length: {summary.session_minutes} minutes",
        f"- Injuries: {', '.join(summary.injuries)}" if summary.injuries else None,
        f"- Available equipment: {', '.join(summary.available_equipment) or 'bodyweight only'}",
        f"- Requested split type: {request.split_type}" if request.split_type else None,
        f"- Requested periodization: {request.periodization}" if request.periodization else None,
        f"- Additional instructions: {request.additional_instructions}" if request.additional_instructions else None,
        f"- Preferred training days: {', '.join(summary.preferred_day_names)}" if summary.preferred_day_names else None,
        f"- Time efficiency preference: {summary.time_efficiency_preference}" if summary.time_efficiency_preference else None,
        f"- Preferred techniques: {', '.join(summary.preferred_techniques)}" if summary.preferred_techniques else None,
    ) + assessment_section(request.assessment)


def build_architect_message(
    analysis: ProfileAnalysis,
    request: GenerationRequest,
    summary: ProfileSummary,
    issues: list[ValidationIssue] | None = None,
) -> str:
    message = _lines(
        f"Profile Analysis:\n{analysis.model_dump_json()}\n",
        "Training Parameters:",
        f"- Duration: {request.duration_weeks} weeks",
        f"- Sessions per week: {summary.sessions_per_week}",
        f"- Session length: {summary.session_minutes} minutes",
        f"- Split type: {analysis.recommended_split}",
        f"- Periodization: {analysis.recommended_periodization}",
        f"- Goals: {', '.join(request.goals)}",
        f"- Preferred training days: {', '.join(summary.preferred_day_names)}" if summary.preferred_day_names else None,
        f"- Additional instructions: {request.additional_instructions}" if request.additional_instructions else None,
    )
    return message + feedback_section(issues)


def build_selector_message(
    skeleton_json: str,
    constraints_json: str,
    library_json: str,
    library_size: int,
    issues: list[ValidationIssue] | None = None,
    flagged_slots: list[str] | None = None,
) -> str:
    message = (
        f"Program Skeleton:\n{skeleton_json}\n\n"
        f"Constraints:\n{constraints_json}\n\n"
        f"Exercise Library ({library_size} exercises, pre-filtered for relevance):\n{library_json}"
    )
    if flagged_slots:
        message += f"\n\nSlots that MUST get a different exercise: {', '.join(flagged_slots)}"
    return message + feedback_section(issues)


def feedback_section(issues: list[ValidationIssue] | None) -> str:
    if not issues:
        return ""
    payload = json.dumps([i.model_dump(exclude_none=True) for i in issues])
    return (
        f"\n\nPREVIOUS ATTEMPT FAILED VALIDATION. Issues to fix:\n{payload}\n\n"
        "Please fix ALL errors and try again."
    )


def program_chat_system_prompt(today: date | None = None) -> str:
    today = today or date.today()
    return f"""You are the AI Program Builder for a fitness coaching platform. You help the coach build training programs through conversation.

## Tools
- list_clients: fetch all clients. Use when the coach mentions a client by name.
- lookup_client_profile: load one client's questionnaire data after identifying them.
- generate_program: generate the program once the required parameters are known. Takes 30-90 seconds.

## Tool rules
- Never call the same tool twice in a conversation.
- If several clients match a name, list them and ask which one.
- After loading a profile, summarize it and propose parameters without re-fetching.

## Required before generating
- goals (at least one of weight_loss, muscle_gain, endurance, flexibility, sport_specific, general_health)
- duration_weeks (1-52)
- sessions_per_week (1-7)

## Defaults
- session_minutes 60 unless the profile says otherwise; equipment from the profile; split and periodization chosen automatically unless requested.
- Always say what you auto-filled so the coach can adjust.

## Style
Concise and professional, bullet points, at most 2-3 questions at a time. Never make up client data.

Current date: {today.isoformat()}"""


def admin_chat_system_prompt(platform_context: str, today: date | None = None) -> str:
    today = today or date.today()
    return f"""You are the AI assistant for a fitness coaching platform. You help the coach run the business by analyzing client data, revenue and training progress.

Use the platform data below to answer questions about clients, programs and progress, to flag clients who need attention, and to suggest specific actions. Be concise, direct and data-driven; quote exact numbers.

Current date: {today.isoformat()}

{platform_context}"""


COACHING_PROMPT = """You are an expert strength and conditioning coach giving a client advice on one exercise. The user message is a JSON object that may contain:

- exercise: the exercise being trained.
- client_profile: experience, goals, injuries, movement confidence, lifestyle and preferred weight_unit.
- assessment_context: movement-pattern levels from the latest assessment; relevant_level is the level for this exercise's pattern.
- program: the program, its week and the prescribed sets, reps, RPE and tempo for this exercise.
- training_history: past sessions of this exercise, newest first, possibly with per-set set_details.
- related_exercise_history: recent sessions of exercises with the same movement pattern.
- current_session: sets completed so far today. The client is mid-workout.

How to coach:
1. No training_history and no current_session: this is a first session. Gauge ability from relevant_level and related_exercise_history, suggest starting around 50-60% of what they might handle and ramping across sets, and cue setup and breathing when movement confidence is low.
2. current_session present: give immediate advice for the next set. Adjust load from how today is going and flag RPE that climbs too fast or reps that drop off.
3. training_history present: look at RPE drift, rep drop-off, weight ramping and whether prescribed targets are being met.
4. With a program, frame advice by the week and phase, respect the periodization model and mention a prescribed tempo.
5. Mention modifications when injuries could be aggravated. Suggest 1-2 alternative exercises after a plateau of 3+ sessions or a clear mismatch with experience.
6. All stored weights are in kilograms. Write weights in the client's weight_unit (1 kg = 2.205 lbs).

Write 2-4 sentences of encouraging, honest, actionable coaching. Output ONLY the coaching text: no JSON, no headings, no bullet lists."""


COACH_ANALYSIS_PROMPT = """You are a data analyst for a strength and conditioning coach. From a client's exercise data and the coaching text they were already given, output a structured assessment as a single JSON object:
{
  "plateau_detected": boolean,
  "suggested_weight_kg": number | null,
  "deload_recommended": boolean,
  "key_observations": [string]
}

Rules:
- plateau_detected is true only when the same weight and reps have repeated for 3+ consecutive sessions. Always false for a first session.
- suggested_weight_kg is the load for the next set (or the working sets) in KILOGRAMS, converting from lbs if needed. Null for bodyweight exercises. It MUST agree with the weight advice in the coaching text.
- deload_recommended is true only when performance is clearly declining or RPE has sat at 9-10. Always false for a first session.
- key_observations holds 2-4 short observations about the training pattern or, for a first session, readiness.
- Output ONLY the JSON object."""


def build_coach_message(
    exercise: CompressedExercise,
    profile: dict[str, Any] | None,
    assessment: dict[str, Any] | None,
    program: ProgramContext | None,
    history: list[dict[str, Any]],
    related_history: list[dict[str, Any]],
    current_session: list[SetLog] | None,
) -> str:
    """The coaching payload, shared by the coaching and analysis calls."""
    payload: dict[str, Any] = {
        "exercise": exercise.model_dump(
            include={"name", "category", "muscle_group", "movement_pattern",
                     "equipment_required", "is_bodyweight", "is_compound"},
            exclude_none=True,
        ),
        "client_profile": profile,
    }
    if assessment:
        levels = assessment.get("computed_levels") or {}
        pattern = (exercise.movement_pattern or "").lower()
        payload["assessment_context"] = {
            "computed_levels": levels,
            "relevant_level": levels.get(pattern) or levels.get("overall"),
            "overall_feeling": (assessment.get("feedback") or {}).get("overall_feeling"),
            "max_difficulty_score": assessment.get("max_difficulty_score"),
        }
    if program is not None:
        prescription = program.prescription
        payload["program"] = {
            "name": program.program_name,
            "difficulty": program.difficulty,
            "periodization": program.periodization,
            "split_type": program.split_type,
            "week": f"{program.current_week}/{program.total_weeks}",
            "prescription": {
                "target_sets": prescription.sets,
                "target_reps": prescription.reps,
                "target_rpe": prescription.rpe_target,
                "intensity_pct": prescription.intensity_pct,
                "tempo": prescription.tempo,
                "rest_seconds": prescription.rest_seconds,
                "technique": prescription.technique if prescription.technique != "straight_set" else None,
                "coach_notes": prescription.notes,
            },
        }
    payload["training_history"] = [
        {k: v for k, v in entry.items() if v is not None} for entry in history
    ]
    if related_history:
        payload["related_exercise_history"] = related_history
    if current_session:
        payload["current_session"] = [s.model_dump() for s in current_session]
    return json.dumps(payload, default=str)


def build_coach_analysis_message(coach_message: str, coaching_text: str) -> str:
    return (
        f"{coach_message}\n\n---\n"
        "COACHING TEXT ALREADY GIVEN TO THE CLIENT (suggested_weight_kg MUST match its weight advice):\n"
        f"{coaching_text}"
    )
