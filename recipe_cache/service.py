"""
Recipe service: cache-first recipe generation.

    request → fingerprint → cache.lookup
        hit  → return cached recipe, generator skipped
        miss → assemble prompt → generator → parse_recipe → cache.store

Only recipes that pass schema validation are stored.
"""

import asyncio
import logging
from typing import Any, Callable

from recipe_cache.cache import CacheManager
from recipe_cache.config import GeneratorSettings
from recipe_cache.errors import GenerationError, GeneratorUnavailableError, MalformedRecipeError
from recipe_cache.fingerprint import fingerprint_key
from recipe_cache.models import RecipeRequest, RecipeResponse, migrate_preferences
from recipe_cache.normalizer import fingerprint_from_context
from recipe_cache.prompts import PromptAssembler, PromptContext
from recipe_cache.providers.anthropic import RecipeGenerator
from recipe_cache.recipes import parse_recipe
from recipe_cache.safety import validate_prompt_safety

logger = logging.getLogger(__name__)


def _not_in_history(history: list[str]) -> Callable[[Any], bool] | None:
    """Veto cached recipes the user has just been given."""
    recent = {name.strip().lower() for name in history if name and name.strip()}
    if not recent:
        return None

    def accept(artifact: Any) -> bool:
        name = artifact.get("recipeName") if isinstance(artifact, dict) else None
        return not (isinstance(name, str) and name.strip().lower() in recent)

    return accept


class RecipeService:

    def __init__(
        self,
        cache: CacheManager,
        generator: RecipeGenerator,
        settings: GeneratorSettings,
        assembler: PromptAssembler | None = None,
    ) -> None:
        self._cache = cache
        self._generator = generator
        self._settings = settings
        self._assembler = assembler or PromptAssembler()

    async def get_recipe(self, request: RecipeRequest) -> RecipeResponse:
        preferences = migrate_preferences(request.preferences)
        fingerprint = fingerprint_from_context(request.prompt, request.profile, preferences)

        hit = await self._cache.lookup(fingerprint, accept=_not_in_history(request.history))
        if hit is not None:
            return RecipeResponse(
                recipe=hit.artifact,
                cache_hit=True,
                match_type=hit.match_type,
                similarity=hit.similarity,
                cache_key=hit.key,
                access_count=hit.access_count,
            )

        if not self._settings.api_key:
            raise GeneratorUnavailableError("No generator API key configured")

        context = PromptContext.build(request.profile, preferences, request.macro_context)
        # The generator is told to refuse unsafe requests; this only flags them.
        validate_prompt_safety(request.prompt, context.safety)
        prompt = self._assembler.recipe_generation(request.prompt, context, request.history)

        # generator.complete() is synchronous; run it in a thread pool so it
        # doesn't block the event loop during the API round-trip.
        result = await asyncio.to_thread(
            self._generator.complete,
            model_id=self._settings.model_id,
            prompt=prompt,
            max_tokens=self._settings.max_tokens,
            system_prompt=self._settings.system_prompt,
        )
        text = result.get("response_text") or ""
        if not text.strip():
            raise GenerationError("Generator returned an empty response")
        if result.get("truncated"):
            raise MalformedRecipeError("Generator reply was cut off at max_tokens")

        recipe = parse_recipe(text)
        artifact = recipe.to_artifact()
        key = await self._cache.store(fingerprint, artifact)

        return RecipeResponse(
            recipe=artifact,
            cache_hit=False,
            cache_key=key or fingerprint_key(fingerprint),
            access_count=1,
            model_used=result.get("model_used"),
            cost_usd=result.get("cost_usd", 0.0),
            latency_ms=result.get("latency_ms", 0.0),
        )
