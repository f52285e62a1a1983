"""
Pydantic request/response models for the recipe-cache API, plus the
versioned user profile and preference records the service consumes.

Profile and preference records are owned by an external service; here they
are read-only input.  Every optional field is modelled explicitly and
defaulted so downstream builders never have to null-check nested blobs.
"""

import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

PREFERENCES_VERSION = "1.0"


class CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase keys stored by the app."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# User profile (basic onboarding record)
# ---------------------------------------------------------------------------

class UserProfile(BaseModel):
    skill_level: Optional[str] = None
    dietary_restrictions: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    kitchen_tools: list[str] = Field(default_factory=list)
    stove_type: Optional[str] = Field(
        default=None, description="gas | electric | induction | none"
    )
    has_oven: Optional[bool] = None
    space_level: Optional[int] = Field(default=None, ge=1, le=5)
    confidence_level: Optional[int] = Field(default=None, ge=1, le=5)
    cooking_fears: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Advanced preferences (versioned)
# ---------------------------------------------------------------------------

class NutritionGoals(CamelModel):
    target_calories: Optional[int] = None   # daily
    target_protein: Optional[int] = None    # grams per meal
    target_carbs: Optional[int] = None
    target_fat: Optional[int] = None
    low_sodium: bool = False
    high_fiber: bool = False


class DietaryPreferences(CamelModel):
    allergies: list[str] = Field(default_factory=list)
    intolerances: list[str] = Field(default_factory=list)
    dietary_style: str = "omnivore"
    nutrition_goals: NutritionGoals = Field(default_factory=NutritionGoals)
    health_objectives: list[str] = Field(default_factory=list)
    spice_tolerance: Literal["mild", "medium", "hot", "fire"] = "medium"
    flavor_preferences: list[str] = Field(default_factory=list)
    custom_favorite_ingredients: list[str] = Field(default_factory=list)
    custom_avoided_ingredients: list[str] = Field(default_factory=list)
    custom_dietary_restrictions: list[str] = Field(default_factory=list)


class CookingContext(CamelModel):
    typical_cooking_time: Literal[
        "quick_15min", "weeknight_30min", "weekend_60min", "project_90min_plus"
    ] = "weeknight_30min"
    meal_prep_style: Literal[
        "fresh_daily", "weekly_batch", "freezer_friendly", "mixed"
    ] = "fresh_daily"
    budget_level: Literal["budget_friendly", "mid_range", "premium_ok"] = "mid_range"
    typical_servings: int = Field(default=2, ge=1)
    lifestyle_factors: list[str] = Field(default_factory=list)


class Appliances(CamelModel):
    essential: list[str] = Field(default_factory=list)
    specialty: list[str] = Field(default_factory=list)


class StorageSpace(CamelModel):
    refrigerator: Optional[Literal["small", "medium", "large"]] = None
    freezer: Optional[Literal["small", "medium", "large"]] = None
    pantry: Optional[Literal["minimal", "moderate", "extensive"]] = None


class KitchenCapabilities(CamelModel):
    appliances: Appliances = Field(default_factory=Appliances)
    pantry_staples: list[str] = Field(default_factory=list)
    storage_space: StorageSpace = Field(default_factory=StorageSpace)
    technique_comfort: dict[str, int] = Field(default_factory=dict)  # technique → 1–5
    known_techniques: list[str] = Field(default_factory=list)
    available_appliances: list[str] = Field(default_factory=list)
    custom_appliances: list[str] = Field(default_factory=list)


class CookingStyles(CamelModel):
    preferred_cuisines: list[str] = Field(default_factory=list)
    cooking_moods: list[str] = Field(default_factory=list)
    avoided_ingredients: list[str] = Field(default_factory=list)
    favorite_ingredients: list[str] = Field(default_factory=list)
    flavor_intensity: str = "balanced"
    custom_cuisines: list[str] = Field(default_factory=list)


class UserPreferences(CamelModel):
    """
    Secondary personalisation record.  A missing group means the user has
    not completed that part of the setup flow; section builders render an
    explicit placeholder for it.
    """

    dietary: Optional[DietaryPreferences] = None
    cooking_context: Optional[CookingContext] = None
    kitchen_capabilities: Optional[KitchenCapabilities] = None
    cooking_styles: Optional[CookingStyles] = None

    version: str = PREFERENCES_VERSION
    last_updated: Optional[str] = None
    setup_completed: bool = False


def migrate_preferences(
    raw: Any, from_version: Optional[str] = None
) -> Optional[UserPreferences]:
    """
    Turn a stored preferences payload into a UserPreferences model.

    Only schema version 1.0 exists; other versions are validated as-is.
    An invalid payload degrades to None (basic profile only) rather than
    failing the request.
    """
    if raw is None:
        return None
    if isinstance(raw, UserPreferences):
        return raw
    version = from_version or (raw.get("version") if isinstance(raw, dict) else None)
    if version not in (None, PREFERENCES_VERSION):
        logger.info("Preferences version %s has no migration; validating as-is", version)
    try:
        return UserPreferences.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Discarding invalid preferences payload: %s", exc.error_count())
        return None


# ---------------------------------------------------------------------------
# Macro context
# ---------------------------------------------------------------------------

class RemainingMacros(BaseModel):
    calories: float
    protein: float
    carbs: float
    fat: float


class MacroContext(BaseModel):
    remaining_macros: Optional[RemainingMacros] = None


# ---------------------------------------------------------------------------
# API request / response
# ---------------------------------------------------------------------------

class RecipeRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="What the user wants to cook.")
    user_id: Optional[str] = None
    profile: Optional[UserProfile] = None
    preferences: Optional[UserPreferences] = None
    macro_context: Optional[MacroContext] = Field(
        default=None,
        description="Remaining daily macros, passed through to the prompt unchanged.",
    )
    history: list[str] = Field(
        default_factory=list,
        description="Recently generated recipe names, used to avoid repetition.",
    )


class RecipeResponse(BaseModel):
    recipe: dict[str, Any]
    cache_hit: bool = False
    match_type: Optional[Literal["exact", "similarity"]] = None
    similarity: Optional[float] = None
    cache_key: str
    access_count: int = 1
    model_used: Optional[str] = None
    cost_usd: float = 0.0
    latency_ms: float = 0.0


class CacheStatsResponse(BaseModel):
    count: int
    total_size_bytes: int
    oldest_timestamp: Optional[float]
    newest_timestamp: Optional[float]
    max_access_count: int
    corrupt_count: int = 0
    hits: int
    misses: int
    hit_rate: float
    max_size: int
    ttl_seconds: float
    similarity_threshold: float
