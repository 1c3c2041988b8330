from __future__ import annotations
from typing import Any, Dict, List, Sequence

from fitcoach.models import ContextBundle, Message

NOT_SPECIFIED = "Not specified"


def _field(profile: Dict[str, Any], key: str) -> Any:
    value = profile.get(key)
    return value if value not in (None, "") else NOT_SPECIFIED


def build_system_prompt(context: ContextBundle) -> str:
    """
    Fold the context bundle into the coach's system instruction.
    Shared by every gateway that talks to a model directly.
    """
    parts: List[str] = [
        "You are FitCoach AI Coach, an expert fitness and nutrition advisor. "
        "You're energetic, supportive, and provide personalized recommendations.\n\n"
        "You have access to the user's profile and recent activity:"
    ]

    profile = context.profile
    if profile:
        name = " ".join(str(p) for p in (profile.get("first_name"), profile.get("last_name")) if p)
        parts.append(
            "\n\nUser Profile:"
            f"\n- Name: {name or NOT_SPECIFIED}"
            f"\n- Age: {_field(profile, 'age')}"
            f"\n- Sex: {_field(profile, 'sex')}"
            f"\n- Height: {_field(profile, 'height')} cm"
            f"\n- Weight: {_field(profile, 'weight')} kg"
            f"\n- Activity Level: {_field(profile, 'activity_level')}"
            f"\n- Goal: {_field(profile, 'goal')}"
        )

    if context.recent_workouts:
        parts.append("\n\nRecent Workouts:")
        for w in context.recent_workouts:
            parts.append(
                f"\n- {w.get('date')}: {w.get('total_calories', 0)} calories burned, "
                f"{w.get('total_duration', 0)} minutes"
            )

    if context.recent_meals:
        parts.append("\n\nRecent Meals:")
        for m in context.recent_meals:
            meal_type = m.get("meal_type") or "meal"
            parts.append(
                f"\n- {m.get('date')} ({meal_type}): {m.get('total_calories', 0)} calories, "
                f"{m.get('total_protein', 0)}g protein"
            )

    parts.append(
        "\n\nProvide helpful, actionable advice. Be encouraging and specific. "
        "If asked about workouts or meal plans, provide detailed, personalized "
        "recommendations based on their profile and goals."
    )
    return "".join(parts)


def build_chat_messages(transcript: Sequence[Message], context: ContextBundle) -> List[Dict[str, str]]:
    """System instruction followed by the full transcript, oldest first."""
    return [{"role": "system", "content": build_system_prompt(context)}] + [m.to_wire() for m in transcript]
