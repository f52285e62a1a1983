"""
Runtime configuration: generator model registry, cache tuning, and the
environment-variable loaders used at startup.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_SEVEN_DAYS_S = 7 * 24 * 60 * 60

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "recipe_cache.db"


@dataclass
class ModelConfig:
    model_id: str
    display_name: str
    input_cost_per_million: float   # USD per 1M input tokens
    output_cost_per_million: float  # USD per 1M output tokens
    max_tokens: int

    @property
    def input_cost_per_token(self) -> float:
        return self.input_cost_per_million / 1_000_000

    @property
    def output_cost_per_token(self) -> float:
        return self.output_cost_per_million / 1_000_000

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.input_cost_per_token
            + output_tokens * self.output_cost_per_token
        )


MODEL_REGISTRY: dict[str, ModelConfig] = {
    "claude-haiku-4-5-20251001": ModelConfig(
        model_id="claude-haiku-4-5-20251001",
        display_name="Claude Haiku 4.5",
        input_cost_per_million=0.25,
        output_cost_per_million=1.25,
        max_tokens=8192,
    ),
    "claude-sonnet-4-5-20250929": ModelConfig(
        model_id="claude-sonnet-4-5-20250929",
        display_name="Claude Sonnet 4.5",
        input_cost_per_million=3.0,
        output_cost_per_million=15.0,
        max_tokens=8192,
    ),
}

DEFAULT_MODEL_ID = "claude-haiku-4-5-20251001"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class CacheSettings:
    """Tuning knobs for CacheManager.  Defaults match the mobile client."""

    ttl_seconds: float = _SEVEN_DAYS_S
    max_size: int = 100
    similarity_threshold: float = 0.8

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")

    @classmethod
    def from_env(cls) -> "CacheSettings":
        return cls(
            ttl_seconds=_env_float("RECIPE_CACHE_TTL_SECONDS", _SEVEN_DAYS_S),
            max_size=_env_int("RECIPE_CACHE_MAX_SIZE", 100),
            similarity_threshold=_env_float("RECIPE_CACHE_SIMILARITY_THRESHOLD", 0.8),
        )


@dataclass(frozen=True)
class StorageSettings:
    backend: str = "sqlite"     # "sqlite" | "memory"
    db_path: Path = DEFAULT_DB_PATH

    @classmethod
    def from_env(cls) -> "StorageSettings":
        backend = os.getenv("RECIPE_CACHE_BACKEND", "sqlite").strip().lower()
        if backend not in ("sqlite", "memory"):
            raise ValueError(f"Unknown RECIPE_CACHE_BACKEND: {backend!r}")
        db_path = os.getenv("RECIPE_CACHE_DB_PATH")
        return cls(
            backend=backend,
            db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
        )


@dataclass(frozen=True)
class GeneratorSettings:
    api_key: str = ""
    model_id: str = DEFAULT_MODEL_ID
    max_tokens: int = 2048
    system_prompt: Optional[str] = None

    @classmethod
    def from_env(cls) -> "GeneratorSettings":
        model_id = os.getenv("RECIPE_MODEL", DEFAULT_MODEL_ID)
        if model_id not in MODEL_REGISTRY:
            raise ValueError(f"Unknown RECIPE_MODEL: {model_id!r}")
        return cls(
            api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            model_id=model_id,
            max_tokens=_env_int("RECIPE_MAX_TOKENS", 2048),
        )
