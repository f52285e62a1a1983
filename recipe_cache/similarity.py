"""
Weighted similarity between two fingerprints, with a hard allergy gate.

Factors and weights
───────────────────
prompt        0.4   word-token overlap  |A∩B| / max(|A|,|B|)
skill         0.1   exact match
dietary       0.2   set overlap, both empty = full match
allergies     0.2   exact set equality (also the safety gate)
kitchen tools 0.1   set overlap, both empty = full match

Safety gate: if the allergy sets differ in any way the pair is ineligible
and no score is computed.  A missed reuse is a cost; a false match on
allergens is not acceptable.
"""

import logging
import re
from dataclasses import dataclass, field

from recipe_cache.normalizer import FingerprintInput

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[\w']+")


@dataclass(frozen=True)
class SimilarityWeights:
    prompt: float = 0.4
    skill: float = 0.1
    dietary: float = 0.2
    allergies: float = 0.2
    tools: float = 0.1

    def __post_init__(self) -> None:
        total = self.prompt + self.skill + self.dietary + self.allergies + self.tools
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Similarity weights must sum to 1.0, got {total:.4f}")
        if min(self.prompt, self.skill, self.dietary, self.allergies, self.tools) < 0:
            raise ValueError("Similarity weights must be non-negative")


@dataclass(frozen=True)
class SimilarityScore:
    eligible: bool
    score: float = 0.0
    factors: dict[str, float] = field(default_factory=dict)


INELIGIBLE = SimilarityScore(eligible=False)


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def overlap_ratio(a: set[str] | frozenset[str], b: set[str] | frozenset[str]) -> float:
    """|A∩B| / max(|A|,|B|); two empty sets are a full match."""
    if not a and not b:
        return 1.0
    return len(a & b) / max(len(a), len(b))


def passes_safety_gate(a: FingerprintInput, b: FingerprintInput) -> bool:
    return set(a.allergies) == set(b.allergies)


class SimilarityScorer:
    """Scores how interchangeable two fingerprints are for cache reuse."""

    def __init__(
        self,
        threshold: float = 0.8,
        weights: SimilarityWeights | None = None,
    ) -> None:
        self._threshold = threshold
        self._weights = weights or SimilarityWeights()

    @property
    def threshold(self) -> float:
        return self._threshold

    def score(self, a: FingerprintInput, b: FingerprintInput) -> SimilarityScore:
        if not passes_safety_gate(a, b):
            return INELIGIBLE

        w = self._weights
        factors = {
            "prompt": overlap_ratio(tokenize(a.prompt_text), tokenize(b.prompt_text)),
            "skill": 1.0 if a.skill_level == b.skill_level else 0.0,
            "dietary": overlap_ratio(set(a.dietary_restrictions), set(b.dietary_restrictions)),
            "allergies": 1.0,
            "tools": overlap_ratio(set(a.kitchen_tools), set(b.kitchen_tools)),
        }
        total = (
            factors["prompt"] * w.prompt
            + factors["skill"] * w.skill
            + factors["dietary"] * w.dietary
            + factors["allergies"] * w.allergies
            + factors["tools"] * w.tools
        )
        return SimilarityScore(eligible=True, score=min(max(total, 0.0), 1.0), factors=factors)

    def is_match(self, result: SimilarityScore) -> bool:
        return result.eligible and result.score >= self._threshold
