"""
Context normaliser: raw generation request → canonical FingerprintInput.

The fingerprint is order-independent (every set is sorted) and tolerant of
partially populated input: absent or malformed optional fields degrade to
empty values, which widens cache reuse instead of blocking it.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from recipe_cache.models import UserPreferences, UserProfile
from recipe_cache.safety import build_safety_constraints, normalize_terms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FingerprintInput:
    prompt_text: str
    skill_level: str = ""
    dietary_restrictions: tuple[str, ...] = ()
    allergies: tuple[str, ...] = ()
    kitchen_tools: tuple[str, ...] = ()
    preferences_blob: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptText": self.prompt_text,
            "skillLevel": self.skill_level,
            "dietaryRestrictions": list(self.dietary_restrictions),
            "allergies": list(self.allergies),
            "kitchenTools": list(self.kitchen_tools),
            "preferencesBlob": self.preferences_blob,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FingerprintInput":
        """Rebuild from a persisted record; re-normalises to stay canonical."""
        if not isinstance(data, dict) or not isinstance(data.get("promptText"), str):
            raise ValueError("fingerprint record is missing promptText")
        return normalize_request(
            data["promptText"],
            skill_level=data.get("skillLevel"),
            dietary_restrictions=data.get("dietaryRestrictions"),
            allergies=data.get("allergies"),
            kitchen_tools=data.get("kitchenTools"),
            preferences=data.get("preferencesBlob"),
        )


def _normalize_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.lower().split())


def _serialize_preferences(preferences: Any) -> str:
    """Canonical JSON for the secondary-preferences blob."""
    if preferences is None:
        return ""
    if isinstance(preferences, str):
        return preferences.strip()
    if isinstance(preferences, BaseModel):
        preferences = preferences.model_dump(mode="json", exclude={"last_updated"})
    if not isinstance(preferences, dict):
        return ""
    try:
        return json.dumps(preferences, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        logger.debug("Unserialisable preferences blob ignored")
        return ""


def normalize_request(
    prompt: Any,
    skill_level: Any = None,
    dietary_restrictions: Any = None,
    allergies: Any = None,
    kitchen_tools: Any = None,
    preferences: Any = None,
) -> FingerprintInput:
    """Pure, never raises."""
    skill = skill_level.strip().lower() if isinstance(skill_level, str) else ""
    return FingerprintInput(
        prompt_text=_normalize_text(prompt),
        skill_level=skill,
        dietary_restrictions=normalize_terms(dietary_restrictions),
        allergies=normalize_terms(allergies),
        kitchen_tools=normalize_terms(kitchen_tools),
        preferences_blob=_serialize_preferences(preferences),
    )


def fingerprint_from_context(
    prompt: str,
    profile: Optional[UserProfile] = None,
    preferences: Optional[UserPreferences] = None,
) -> FingerprintInput:
    """
    Fingerprint a request from the structured profile/preference records.

    The allergy dimension is the safety gate set from build_safety_constraints:
    every allergen, intolerance and diet the generator prompt is built around.
    Diets also feed the weighted dietary dimension.
    """
    safety = build_safety_constraints(profile, preferences)
    return normalize_request(
        prompt,
        skill_level=profile.skill_level if profile else None,
        dietary_restrictions=safety.dietary_restrictions,
        allergies=safety.gate_allergens,
        kitchen_tools=profile.kitchen_tools if profile else None,
        preferences=preferences,
    )
