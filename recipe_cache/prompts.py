"""
Prompt assembly for the recipe generator.

Each context section has its own pure builder:
    (profile, preferences, extra) → text block

Missing data renders an explicit "Not specified" line instead of being
dropped, so the generator is never silently under-informed.  Templates name
the sections they need and are populated with {{placeholder}} substitution;
an unknown template or a placeholder left unresolved raises TemplateError.

The safety section is built from SafetyConstraints, the same object whose
gate_allergens feed the cache fingerprint.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from recipe_cache.errors import TemplateError
from recipe_cache.models import MacroContext, UserPreferences, UserProfile
from recipe_cache.safety import SafetyConstraints, build_safety_constraints

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified"
_NOT_SET_UP = "User has not completed advanced preference setup."
_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

_SKILL_LABELS = {
    "complete_beginner": "Complete beginner (rarely cooks)",
    "basic_skills": "Basic skills (simple dishes)",
    "developing": "Developing cook (regular cooking)",
    "confident": "Confident cook (experiments often)",
}

_STOVE_LABELS = {
    "gas": "gas stove",
    "electric": "electric stove",
    "induction": "induction cooktop",
    "none": "no stove/microwave only",
}

_ESSENTIAL_TOOLS = ("chef_knife", "cutting_board", "mixing_bowls")


def _humanize(values: Iterable[str], empty: str = NOT_SPECIFIED) -> str:
    text = ", ".join(v.replace("_", " ") for v in values if v)
    return text or empty


def _lines(*lines: Optional[str]) -> str:
    return "\n".join(line for line in lines if line)


@dataclass
class PromptContext:
    profile: Optional[UserProfile] = None
    preferences: Optional[UserPreferences] = None
    macro: Optional[MacroContext] = None
    safety: SafetyConstraints = field(default_factory=SafetyConstraints)

    @classmethod
    def build(
        cls,
        profile: Optional[UserProfile],
        preferences: Optional[UserPreferences],
        macro: Optional[MacroContext] = None,
    ) -> "PromptContext":
        return cls(
            profile=profile,
            preferences=preferences,
            macro=macro,
            safety=build_safety_constraints(profile, preferences),
        )


# ---------------------------------------------------------------------------
# Profile descriptions
# ---------------------------------------------------------------------------

def describe_skill(profile: Optional[UserProfile]) -> str:
    skill = profile.skill_level if profile else None
    return _SKILL_LABELS.get(skill or "", "Unknown skill level")


def describe_kitchen(profile: Optional[UserProfile]) -> str:
    if profile is None:
        return NOT_SPECIFIED
    tools = set(profile.kitchen_tools)
    equipped = "Well-equipped" if all(t in tools for t in _ESSENTIAL_TOOLS) else "Basic"
    stove = _STOVE_LABELS.get(profile.stove_type or "", "unknown stove")
    oven = "has an oven" if profile.has_oven else "no oven"
    if profile.space_level is None:
        space = "unknown"
    elif profile.space_level <= 2:
        space = "limited"
    elif profile.space_level >= 4:
        space = "spacious"
    else:
        space = "moderate"
    return f"{equipped} kitchen with {stove}, {oven}, and {space} space."


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------

def build_user_profile_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    confidence = profile.confidence_level if profile and profile.confidence_level else None
    fears = profile.cooking_fears if profile else []
    return _lines(
        "USER COOKING PROFILE:",
        f"- Skill Level: {describe_skill(profile)}",
        f"- Kitchen Setup: {describe_kitchen(profile)}",
        f"- Confidence: {f'{confidence}/5' if confidence else NOT_SPECIFIED}",
        f"- Cooking Concerns: {_humanize(fears)}",
    )


def build_safety_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Optional[SafetyConstraints] = None,
) -> str:
    """
    The union of every allergy and restriction from profile and preferences,
    deduplicated, with an explicit precedence instruction.  Pass ``extra`` to
    reuse an already computed SafetyConstraints.
    """
    safety = extra if extra is not None else build_safety_constraints(profile, preferences)
    avoid = safety.gate_allergens
    return _lines(
        "CRITICAL SAFETY INFORMATION:",
        f"- Allergies: {_humanize(safety.allergies, 'None')}",
        f"- Intolerances: {_humanize(safety.intolerances, 'None')}",
        f"- Dietary Restrictions: {_humanize(safety.dietary_restrictions, 'None')}",
        f"- Custom Restrictions: {_humanize(safety.custom_restrictions, 'None')}",
        f"- Complete list to avoid: {_humanize(avoid, 'None')}",
        "",
        "SAFETY REQUIREMENTS:",
        "- NEVER suggest ingredients that match ANY allergy or restriction listed above",
        "- These safety constraints take absolute precedence over all other preferences",
        "- When in doubt about safety, err on the side of caution",
        "- Always double-check ingredients against the complete restriction list",
    )


def build_kitchen_constraints_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    tools = profile.kitchen_tools if profile else []
    capabilities = preferences.kitchen_capabilities if preferences else None
    specialty = capabilities.appliances.specialty if capabilities else []
    custom = capabilities.custom_appliances if capabilities else []

    oven = "- NO OVEN - stovetop/microwave only" if profile and profile.has_oven is False else None
    stove = (
        "- NO STOVE - microwave/no-cook only"
        if profile and profile.stove_type == "none" else None
    )
    space = (
        "- Limited prep space - suggest one-pot or minimal dish recipes"
        if profile and profile.space_level is not None and profile.space_level <= 2
        else None
    )
    return _lines(
        "KITCHEN CONSTRAINTS:",
        f"- Available Tools: {_humanize(tools)}",
        oven,
        stove,
        space,
        f"- Specialty Appliances: {_humanize(specialty, 'None')}",
        f"- Custom Appliances: {_humanize(custom, 'None')}",
        "",
        "CONSTRAINT REQUIREMENTS:",
        "- Only suggest recipes/techniques compatible with available equipment",
        "- Adapt complexity to match tool availability",
        "- Suggest alternatives when preferred tools aren't available",
    )


def build_dietary_preferences_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    dietary = preferences.dietary if preferences else None
    if dietary is None:
        return f"DIETARY PREFERENCES: {_NOT_SET_UP} Using basic profile only."

    goals = dietary.nutrition_goals
    goal_parts = [
        "Low Sodium" if goals.low_sodium else None,
        "High Fiber" if goals.high_fiber else None,
        f"{goals.target_protein}g protein per meal" if goals.target_protein else None,
        f"{goals.target_calories} daily calories" if goals.target_calories else None,
    ]
    styles = preferences.cooking_styles if preferences else None
    favorites = [*dietary.custom_favorite_ingredients, *(styles.favorite_ingredients if styles else [])]
    avoided = [*dietary.custom_avoided_ingredients, *(styles.avoided_ingredients if styles else [])]

    return _lines(
        "DIETARY PREFERENCES:",
        f"- Dietary Style: {dietary.dietary_style}",
        f"- Spice Tolerance: {dietary.spice_tolerance}",
        f"- Nutrition Goals: {', '.join(p for p in goal_parts if p) or NOT_SPECIFIED}",
        f"- Health Objectives: {_humanize(dietary.health_objectives, 'None')}",
        f"- Flavor Preferences: {_humanize(dietary.flavor_preferences, 'None')}",
        f"- Favorite Ingredients: {_humanize(favorites)}",
        f"- Avoided Ingredients: {_humanize(avoided, 'None')}",
    )


def build_cooking_context_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    ctx = preferences.cooking_context if preferences else None
    if ctx is None:
        return f"COOKING CONTEXT: {_NOT_SET_UP}"
    return _lines(
        "COOKING CONTEXT:",
        f"- Typical Cooking Time: {ctx.typical_cooking_time.replace('_', ' ')}",
        f"- Budget Level: {ctx.budget_level.replace('_', ' ')}",
        f"- Typical Servings: {ctx.typical_servings}",
        f"- Meal Prep Style: {ctx.meal_prep_style.replace('_', ' ')}",
        f"- Lifestyle Factors: {_humanize(ctx.lifestyle_factors)}",
    )


def build_kitchen_capabilities_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    caps = preferences.kitchen_capabilities if preferences else None
    if caps is None:
        return f"KITCHEN CAPABILITIES: {_NOT_SET_UP}"
    comfort = ", ".join(
        f"{technique.replace('_', ' ')}: {level}/5"
        for technique, level in sorted(caps.technique_comfort.items())
    ) or NOT_SPECIFIED
    storage = caps.storage_space
    return _lines(
        "KITCHEN CAPABILITIES:",
        f"- Technique Comfort Levels: {comfort}",
        f"- Pantry Staples: {_humanize(caps.pantry_staples)}",
        f"- Storage: {storage.refrigerator or 'unknown'} fridge, "
        f"{storage.freezer or 'unknown'} freezer, {storage.pantry or 'unknown'} pantry",
        f"- Custom Equipment: {_humanize(caps.custom_appliances, 'None')}",
    )


def build_cooking_styles_section(
    profile: Optional[UserProfile],
    preferences: Optional[UserPreferences] = None,
    extra: Any = None,
) -> str:
    styles = preferences.cooking_styles if preferences else None
    if styles is None:
        return f"COOKING STYLE PREFERENCES: {_NOT_SET_UP}"
    return _lines(
        "COOKING STYLE PREFERENCES:",
        f"- Preferred Cuisines: {_humanize([*styles.preferred_cuisines, *styles.custom_cuisines], 'None')}",
        f"- Cooking Moods: {_humanize(styles.cooking_moods, 'None')}",
        f"- Flavor Intensity: {styles.flavor_intensity}",
    )


def build_macro_section(
    profile: Optional[UserProfile] = None,
    preferences: Optional[UserPreferences] = None,
    extra: Optional[MacroContext] = None,
) -> str:
    remaining = extra.remaining_macros if extra else None
    if remaining is None:
        return f"DAILY MACRO CONTEXT: {NOT_SPECIFIED} (no other meals planned today)."
    return _lines(
        "DAILY MACRO CONTEXT:",
        "The user has already planned other meals for today. Generate a recipe that "
        "helps them meet their remaining nutritional goals:",
        f"- Remaining Calories: {remaining.calories:g}",
        f"- Remaining Protein: {remaining.protein:g}g",
        f"- Remaining Carbs: {remaining.carbs:g}g",
        f"- Remaining Fat: {remaining.fat:g}g",
        "",
        "MACRO OPTIMIZATION REQUIREMENTS:",
        "- Recipe should fit within remaining calorie budget",
        "- Prioritize hitting remaining protein goals while balancing other macros",
        "- If remaining calories are low, focus on nutrient-dense, lower-calorie options",
        "- If remaining protein is high, emphasize protein-rich ingredients and methods",
    )


def build_history_section(history: Iterable[str]) -> str:
    names = [h for h in history if h]
    if not names:
        return ""
    return (
        "RECIPE HISTORY CONTEXT:\n"
        f"The user has recently generated: {', '.join(names)}. "
        "Please provide something new and distinct to avoid repetition."
    )


def build_context_sections(context: PromptContext) -> dict[str, str]:
    p, prefs = context.profile, context.preferences
    return {
        "user_profile": build_user_profile_section(p, prefs),
        "safety_constraints": build_safety_section(p, prefs, context.safety),
        "kitchen_constraints": build_kitchen_constraints_section(p, prefs),
        "dietary_preferences": build_dietary_preferences_section(p, prefs),
        "cooking_context": build_cooking_context_section(p, prefs),
        "kitchen_capabilities": build_kitchen_capabilities_section(p, prefs),
        "cooking_styles": build_cooking_styles_section(p, prefs),
        "macro_context": build_macro_section(p, prefs, context.macro),
    }


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

COACH_IDENTITY = (
    "You are Sage, a friendly and encouraging AI cooking coach designed to help "
    "beginners build confidence in the kitchen. Prioritize food safety and dietary "
    "restrictions above all else, explain techniques simply with sensory cues, and "
    "give practical advice tailored to the user's actual capabilities."
)

RECIPE_JSON_SCHEMA = """{
  "recipeName": "A catchy but clear name for the recipe",
  "difficulty": <number between 1 and 5 (1=easiest)>,
  "totalTime": "string (e.g., '30 minutes')",
  "whyGood": "A short, encouraging sentence explaining why this recipe fits the user's profile.",
  "ingredients": [ { "amount": "string", "name": "string" } ],
  "instructions": [ { "step": <number>, "text": "string" } ],
  "tips": [ "string" ],
  "servings": <number>,
  "totalCost": <number (USD)>,
  "costPerServing": <number (USD)>,
  "costBreakdown": [ { "ingredient": "string", "estimatedCost": <number> } ],
  "caloriesPerServing": <number>,
  "proteinPerServing": <number (grams)>,
  "carbsPerServing": <number (grams)>,
  "fatPerServing": <number (grams)>,
  "sugarPerServing": <number (grams, optional)>,
  "fiberPerServing": <number (grams, optional)>,
  "sodiumPerServing": <number (mg, optional)>
}"""

INSTRUCTION_GUIDELINES = """COOKING INSTRUCTION GUIDELINES:
- Write instructions with rich sensory descriptions to guide beginners
- Include visual, auditory, textural and aromatic cues ("until golden brown", "when fragrant")
- Mention timing alongside sensory cues
- Help beginners know what "done" looks like
- Provide alternatives for common issues ("If it's browning too fast, lower the heat")"""

COST_ESTIMATION_GUIDELINES = """COST ESTIMATION GUIDELINES:
- Use average US grocery store prices for ingredients
- Consider typical package sizes
- Account for pantry staples at reduced cost
- Round costs to nearest $0.05"""

NUTRITIONAL_GUIDELINES = """NUTRITIONAL CALCULATION GUIDELINES:
- Calculate macros from ingredient quantities and standard nutritional data
- Account for cooking methods (oils, cooking losses)
- Round calories to nearest 5, macros to 1 decimal place
- Include approximate sodium content"""

_FORMAT_ERRORS: dict[str, tuple[str, ...]] = {
    "recipe_generation": (
        'Instructions must be an array of objects with "step" and "text" fields',
        "Ensure all numeric values are numbers, not strings",
        '"difficulty" must be a whole number from 1 to 5',
        '"tips" must be an array of strings, not a single string',
    ),
    "grocery_list": (
        'Each category must have a "category" string and an "items" array of strings',
    ),
}


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    version: str
    base_prompt: str
    context_sections: tuple[str, ...] = ()
    output_format: str = "text"
    guidelines: tuple[str, ...] = ()


PROMPT_TEMPLATES: dict[str, PromptTemplate] = {
    "recipe_generation": PromptTemplate(
        name="Recipe Generation",
        version="1.1",
        base_prompt=f"""{COACH_IDENTITY}

Generate a recipe based on the user's request and their detailed profile.

USER REQUEST: "{{{{user_request}}}}"

{{{{context_sections}}}}
{{{{history_context}}}}
---
OUTPUT REQUIREMENTS:
1. JSON ONLY: respond with a single valid JSON object and nothing else.
2. STRICT SCHEMA: the object must match the schema below.
3. ERROR HANDLING: if the request cannot be fulfilled (e.g. it conflicts with a safety
   constraint), respond with {{"error": "<reason>"}} only.

JSON SCHEMA:
{RECIPE_JSON_SCHEMA}""",
        context_sections=(
            "user_profile",
            "safety_constraints",
            "kitchen_constraints",
            "dietary_preferences",
            "cooking_context",
            "kitchen_capabilities",
            "cooking_styles",
            "macro_context",
        ),
        output_format="json",
        guidelines=(INSTRUCTION_GUIDELINES, COST_ESTIMATION_GUIDELINES, NUTRITIONAL_GUIDELINES),
    ),
    "recipe_modification": PromptTemplate(
        name="Recipe Modification",
        version="1.0",
        base_prompt=f"""{COACH_IDENTITY}

Modify an existing recipe based on the user's request while keeping the same structure.

ORIGINAL RECIPE:
{{{{original_recipe}}}}

USER MODIFICATION REQUEST: "{{{{modification_request}}}}"

{{{{context_sections}}}}

MODIFICATION GUIDELINES:
- Keep the same JSON structure and field names
- Adjust cooking times, cost estimates and nutrition for any ingredient changes
- If substituting ingredients, explain why the change works in the tips
- Keep the same serving size unless specifically requested to change

Return the modified recipe in the same JSON format as the original.""",
        context_sections=(
            "user_profile",
            "safety_constraints",
            "kitchen_constraints",
            "dietary_preferences",
        ),
        output_format="json",
    ),
    "cooking_advice": PromptTemplate(
        name="Cooking Advice",
        version="1.0",
        base_prompt=f"""{COACH_IDENTITY}

Provide helpful cooking guidance based on the user's message and profile.

USER MESSAGE: "{{{{user_message}}}}"

{{{{context_sections}}}}

COACHING GUIDELINES:
- Be encouraging, supportive, and patient
- Give specific, actionable advice that fits their profile and limitations
- Include safety reminders when relevant""",
        context_sections=(
            "user_profile",
            "safety_constraints",
            "kitchen_constraints",
            "dietary_preferences",
            "cooking_context",
            "kitchen_capabilities",
        ),
    ),
    "grocery_list": PromptTemplate(
        name="Grocery List Generation",
        version="1.0",
        base_prompt="""Analyze the recipe and generate a well-organized grocery list.

RECIPE CONTENT:
\"\"\"
{{recipe_content}}
\"\"\"

Generate a JSON array with grocery items organized by store sections:
[
  { "category": "string", "items": ["string"] }
]""",
        output_format="json",
    ),
}


def _format_error_block(template_name: str) -> str:
    errors = _FORMAT_ERRORS.get(template_name)
    if not errors:
        return ""
    lines = [f"{i}. {e}" for i, e in enumerate(errors, 1)]
    return "COMMON FORMATTING ERRORS TO AVOID:\n" + "\n".join(lines)


def populate_template(
    template_name: str,
    params: Mapping[str, Any],
    context: PromptContext,
) -> str:
    """
    Fill a template's placeholders in a single pass.  Parameter values are
    inserted verbatim, so braces inside user text are never re-expanded.
    """
    template = PROMPT_TEMPLATES.get(template_name)
    if template is None:
        raise TemplateError(f"Prompt template {template_name!r} not found")

    built = build_context_sections(context) if template.context_sections else {}
    sections = "\n\n".join(built[name] for name in template.context_sections if built.get(name))

    values: dict[str, str] = {"context_sections": sections}
    values.update({k: str(v) for k, v in params.items()})

    unresolved: list[str] = []

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        unresolved.append(name)
        return match.group(0)

    prompt = _PLACEHOLDER_RE.sub(_substitute, template.base_prompt)
    if unresolved:
        raise TemplateError(
            f"Template {template_name!r} has unresolved placeholders: {sorted(set(unresolved))}"
        )

    extras = [*template.guidelines, _format_error_block(template_name)]
    for block in extras:
        if block:
            prompt += "\n\n" + block
    return prompt


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------

class PromptAssembler:
    """Builds complete generator prompts from the caller's profile context."""

    def recipe_generation(
        self,
        request: str,
        context: PromptContext,
        history: Iterable[str] = (),
    ) -> str:
        prompt = populate_template(
            "recipe_generation",
            {"user_request": request, "history_context": build_history_section(history)},
            context,
        )
        logger.debug(
            "Assembled recipe prompt | chars=%d safety_terms=%d",
            len(prompt), len(context.safety.gate_allergens),
        )
        return prompt

    def recipe_modification(
        self, original_recipe: Any, modification_request: str, context: PromptContext
    ) -> str:
        return populate_template(
            "recipe_modification",
            {
                "original_recipe": json.dumps(original_recipe, indent=2),
                "modification_request": modification_request,
            },
            context,
        )

    def cooking_advice(self, user_message: str, context: PromptContext) -> str:
        return populate_template("cooking_advice", {"user_message": user_message}, context)

    def grocery_list(self, recipe_content: str) -> str:
        return populate_template("grocery_list", {"recipe_content": recipe_content}, PromptContext())
