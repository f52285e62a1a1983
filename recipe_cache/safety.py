"""
Safety constraints: the single source of truth for the allergens a request
must respect.

Both the prompt assembler (what the generator is told to avoid) and the
cache fingerprint (what the similarity safety gate compares) read the same
SafetyConstraints.gate_allergens, so the two can never drift apart.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from recipe_cache.models import UserPreferences, UserProfile

logger = logging.getLogger(__name__)


def normalize_terms(value: Any) -> tuple[str, ...]:
    """
    Canonicalise a loosely-typed list of terms into a sorted, de-duplicated
    tuple of trimmed lower-case strings.

    A bare string counts as a one-element list so safety data is never
    dropped; any other non-iterable degrades to empty.  Never raises.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    elif isinstance(value, dict) or not isinstance(value, Iterable):
        return ()

    terms: set[str] = set()
    for item in value:
        if item is None or isinstance(item, (dict, list, tuple, set)):
            continue
        term = " ".join(str(item).lower().split())
        if term:
            terms.add(term)
    return tuple(sorted(terms))


@dataclass(frozen=True)
class SafetyConstraints:
    allergies: tuple[str, ...] = ()              # profile + preference allergies
    dietary_restrictions: tuple[str, ...] = ()   # profile-level diets
    intolerances: tuple[str, ...] = ()
    custom_restrictions: tuple[str, ...] = ()
    profile_restrictions: tuple[str, ...] = field(default=())  # labelled, for display

    @property
    def ingredient_restrictions(self) -> tuple[str, ...]:
        """Allergens, intolerances and custom restrictions: things that must not be eaten."""
        return normalize_terms(
            [*self.allergies, *self.intolerances, *self.custom_restrictions]
        )

    @property
    def gate_allergens(self) -> tuple[str, ...]:
        """
        Every constraint the generator is told to respect, profile diets
        included.  This is the set the cache safety gate compares.
        """
        return normalize_terms([*self.ingredient_restrictions, *self.dietary_restrictions])

    @property
    def is_empty(self) -> bool:
        return not self.gate_allergens


def build_safety_constraints(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
) -> SafetyConstraints:
    """Union of profile-level and preference-level safety data."""
    profile_allergies = normalize_terms(profile.allergies if profile else None)
    profile_diets = normalize_terms(profile.dietary_restrictions if profile else None)

    dietary = preferences.dietary if preferences else None
    pref_allergies = normalize_terms(dietary.allergies if dietary else None)
    intolerances = normalize_terms(dietary.intolerances if dietary else None)
    custom = normalize_terms(dietary.custom_dietary_restrictions if dietary else None)

    labelled = tuple(
        [f"ALLERGY: {a}" for a in profile_allergies]
        + [f"DIET: {d}" for d in profile_diets]
    )

    return SafetyConstraints(
        allergies=normalize_terms([*profile_allergies, *pref_allergies]),
        dietary_restrictions=profile_diets,
        intolerances=intolerances,
        custom_restrictions=custom,
        profile_restrictions=labelled,
    )


def validate_prompt_safety(text: str, constraints: SafetyConstraints) -> bool:
    """
    Return False when the free-text request names a restricted ingredient
    (e.g. "peanut noodles" from a user allergic to peanuts).
    """
    lowered = text.lower()
    for term in constraints.ingredient_restrictions:
        if term in lowered:
            logger.warning("Prompt safety check: request mentions restricted %r", term)
            return False
    return True
