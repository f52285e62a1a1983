"""
FastAPI application: personalised recipe generation behind a safety-gated cache.

Endpoints
─────────
POST   /recipes       Return a cached recipe for the request or generate a new one.
GET    /cache/stats   Cache size, age range, access counts, hit rate.
DELETE /cache         Drop every cached recipe.
GET    /health        Health check.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import anthropic as anthropic_sdk
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from recipe_cache.cache import CacheManager
from recipe_cache.config import CacheSettings, GeneratorSettings, StorageSettings
from recipe_cache.errors import (
    GenerationError,
    GeneratorUnavailableError,
    MalformedRecipeError,
    StorageError,
)
from recipe_cache.models import CacheStatsResponse, RecipeRequest, RecipeResponse
from recipe_cache.providers.anthropic import AnthropicProvider, RecipeGenerator
from recipe_cache.service import RecipeService
from recipe_cache.store import ArtifactStore, InMemoryArtifactStore, SQLiteArtifactStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

load_dotenv()

# Expo dev server and web build of the mobile client.
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "RECIPE_CACHE_CORS_ORIGINS", "http://localhost:8081,http://localhost:19006"
    ).split(",")
    if origin.strip()
]


def build_store(settings: StorageSettings) -> ArtifactStore:
    if settings.backend == "memory":
        return InMemoryArtifactStore()
    return SQLiteArtifactStore(settings.db_path)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    cache: Optional[CacheManager] = None,
    generator: Optional[RecipeGenerator] = None,
    generator_settings: Optional[GeneratorSettings] = None,
) -> FastAPI:
    """
    Wire the service.  Tests inject an in-memory cache and a fake generator;
    production reads everything from the environment.
    """
    generator_settings = generator_settings or GeneratorSettings.from_env()
    if not generator_settings.api_key:
        logger.warning("ANTHROPIC_API_KEY not set — only cached recipes can be served")

    if cache is None:
        cache = CacheManager(build_store(StorageSettings.from_env()), CacheSettings.from_env())
    if generator is None:
        generator = AnthropicProvider(api_key=generator_settings.api_key)

    service = RecipeService(cache, generator, generator_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await cache.store_backend.init()
        yield

    app = FastAPI(
        title="Recipe Cache",
        description="Personalised recipe generation with safety-gated similarity caching.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health() -> dict:
        """Health check."""
        return {"status": "ok", "api_key_configured": bool(generator_settings.api_key)}

    @app.get("/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats() -> CacheStatsResponse:
        """Diagnostic snapshot; storage errors surface as 503."""
        try:
            stats = await cache.stats()
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        settings = cache.settings
        return CacheStatsResponse(
            count=stats.count,
            total_size_bytes=stats.total_size_bytes,
            oldest_timestamp=stats.oldest_timestamp,
            newest_timestamp=stats.newest_timestamp,
            max_access_count=stats.max_access_count,
            corrupt_count=stats.corrupt_count,
            hits=cache.hits,
            misses=cache.misses,
            hit_rate=round(cache.hit_rate(), 4),
            max_size=settings.max_size,
            ttl_seconds=settings.ttl_seconds,
            similarity_threshold=settings.similarity_threshold,
        )

    @app.delete("/cache")
    async def clear_cache() -> dict:
        try:
            await cache.clear()
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return {"status": "cleared"}

    @app.post("/recipes", response_model=RecipeResponse)
    async def get_recipe(request: RecipeRequest) -> RecipeResponse:
        """
        Serve a cached recipe when one matches exactly, or is similar enough
        and carries the exact same allergen set; otherwise generate, validate,
        cache and return a new one.
        """
        logger.info(
            "Received /recipes request | user=%s prompt_len=%d",
            request.user_id or "-",
            len(request.prompt),
        )
        try:
            return await service.get_recipe(request)

        except GeneratorUnavailableError as exc:
            logger.warning("Cache miss with no generator configured: %s", exc)
            raise HTTPException(status_code=503, detail="ANTHROPIC_API_KEY not configured.")

        except MalformedRecipeError as exc:
            logger.warning("Generator returned an unusable recipe: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))

        except GenerationError as exc:
            logger.error("Recipe generation failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))

        except anthropic_sdk.AuthenticationError as exc:
            logger.error("Authentication failed: %s", exc)
            raise HTTPException(status_code=401, detail="Invalid Anthropic API key.")

        except anthropic_sdk.RateLimitError as exc:
            logger.warning("Rate limited by generator: %s", exc)
            raise HTTPException(status_code=429, detail="Generator rate limit reached.")

        except anthropic_sdk.APIStatusError as exc:
            logger.warning("Generator API error %d: %s", exc.status_code, exc.message)
            raise HTTPException(status_code=502, detail=f"Generator error: {exc.message}")

        except anthropic_sdk.APIConnectionError as exc:
            logger.warning("Generator unreachable: %s", exc)
            raise HTTPException(status_code=502, detail="Generator unreachable.")

    return app


app = create_app()
