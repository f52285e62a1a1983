"""
Recipe generator backed by the Anthropic messages API.

Recipe prompts ask for a single JSON object, so the assistant turn is
pre-filled with "{" and the brace is put back on the returned text.  A reply
cut off at max_tokens is flagged as truncated: parse_recipe() will reject it
and nothing half-written reaches the cache.
"""

import logging
import time
from typing import Optional, Protocol

import anthropic

from recipe_cache.config import MODEL_REGISTRY
from recipe_cache.prompts import COACH_IDENTITY

logger = logging.getLogger(__name__)

_JSON_PREFILL = "{"


class RecipeGenerator(Protocol):
    """Anything that turns an assembled recipe prompt into generator output."""

    def complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int = 2048,
        system_prompt: Optional[str] = None,
    ) -> dict: ...


class AnthropicProvider:

    def __init__(self, api_key: str) -> None:
        self._client = anthropic.Anthropic(api_key=api_key)

    def complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int = 2048,
        system_prompt: Optional[str] = None,
    ) -> dict:
        """
        Generate one recipe.  Returns:
            {
                "response_text": str,    # JSON text, prefill restored
                "model_used":    str,
                "input_tokens":  int,
                "output_tokens": int,
                "cost_usd":      float,
                "latency_ms":    float,
                "truncated":     bool,
            }

        Raises anthropic.APIError (or subclasses) on failure.
        """
        model_cfg = MODEL_REGISTRY.get(model_id)
        if model_cfg is None:
            raise ValueError(f"Unknown recipe model: {model_id!r}")

        started = time.perf_counter()
        response = self._client.messages.create(
            model=model_id,
            max_tokens=min(max_tokens, model_cfg.max_tokens),
            system=system_prompt or COACH_IDENTITY,
            messages=[
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": _JSON_PREFILL},
            ],
        )
        latency_ms = (time.perf_counter() - started) * 1000

        body = "".join(block.text for block in response.content if hasattr(block, "text"))
        truncated = response.stop_reason == "max_tokens"
        if truncated:
            logger.warning(
                "Recipe reply hit max_tokens and is incomplete | model=%s out_tok=%d",
                model_id, response.usage.output_tokens,
            )

        cost_usd = model_cfg.estimate_cost(response.usage.input_tokens, response.usage.output_tokens)
        logger.info(
            "Recipe generated | model=%s prompt_chars=%d reply_chars=%d cost=$%.6f latency=%.0fms",
            model_id, len(prompt), len(body) + 1, cost_usd, latency_ms,
        )

        return {
            "response_text": _JSON_PREFILL + body,
            "model_used": model_id,
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
            "cost_usd": cost_usd,
            "latency_ms": round(latency_ms, 1),
            "truncated": truncated,
        }
