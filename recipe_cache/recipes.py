"""
Recipe schema and generator-output validation.

Only a fully valid recipe may be cached.  parse_recipe() rejects invalid
JSON, error-flagged payloads ({"error": ...}) and schema violations with
MalformedRecipeError.
"""

import json
import logging
import re
from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator

from recipe_cache.errors import MalformedRecipeError
from recipe_cache.models import CamelModel

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class RecipeIngredient(CamelModel):
    amount: str
    name: str = Field(..., min_length=1)


class RecipeInstruction(CamelModel):
    step: int = Field(..., ge=1)
    text: str = Field(..., min_length=1)


class CostItem(CamelModel):
    ingredient: str
    estimated_cost: float = Field(..., ge=0)


class RecipeData(CamelModel):
    recipe_name: str = Field(..., min_length=1)
    difficulty: int = Field(..., ge=1, le=5)
    total_time: str = Field(..., min_length=1)
    why_good: str = ""
    ingredients: list[RecipeIngredient] = Field(..., min_length=1)
    instructions: list[RecipeInstruction] = Field(..., min_length=1)
    tips: list[str] = Field(default_factory=list)

    servings: Optional[int] = Field(default=None, ge=1)
    total_cost: Optional[float] = Field(default=None, ge=0)
    cost_per_serving: Optional[float] = Field(default=None, ge=0)
    cost_breakdown: Optional[list[CostItem]] = None

    calories_per_serving: Optional[float] = Field(default=None, ge=0)
    protein_per_serving: Optional[float] = Field(default=None, ge=0)
    carbs_per_serving: Optional[float] = Field(default=None, ge=0)
    fat_per_serving: Optional[float] = Field(default=None, ge=0)
    sugar_per_serving: Optional[float] = Field(default=None, ge=0)
    fiber_per_serving: Optional[float] = Field(default=None, ge=0)
    sodium_per_serving: Optional[float] = Field(default=None, ge=0)

    @field_validator("instructions")
    @classmethod
    def _steps_numbered_in_order(cls, steps: list[RecipeInstruction]) -> list[RecipeInstruction]:
        numbers = [s.step for s in steps]
        if numbers != list(range(1, len(steps) + 1)):
            raise ValueError("instruction steps must be numbered 1..n in order")
        return steps

    def to_artifact(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase keys the clients expect."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def parse_recipe(raw: Any) -> RecipeData:
    """Validate generator output (JSON text or an already-decoded dict)."""
    if isinstance(raw, str):
        try:
            data = json.loads(_strip_fences(raw))
        except ValueError as exc:
            raise MalformedRecipeError(f"Generator output is not valid JSON: {exc}") from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise MalformedRecipeError("Generator output must be a JSON object")
    if "error" in data:
        raise MalformedRecipeError(f"Generator declined the request: {data['error']}")

    try:
        return RecipeData.model_validate(data)
    except ValidationError as exc:
        logger.warning("Recipe failed schema validation | errors=%d", exc.error_count())
        raise MalformedRecipeError(f"Recipe does not match schema: {exc}") from exc
