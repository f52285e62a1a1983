import pytest

from recipe_cache.errors import TemplateError
from recipe_cache.models import (
    CookingContext,
    DietaryPreferences,
    MacroContext,
    RemainingMacros,
    UserPreferences,
    UserProfile,
)
from recipe_cache.normalizer import fingerprint_from_context
from recipe_cache.prompts import (
    NOT_SPECIFIED,
    PromptAssembler,
    PromptContext,
    build_cooking_context_section,
    build_history_section,
    build_kitchen_constraints_section,
    build_macro_section,
    build_safety_section,
    build_user_profile_section,
    describe_kitchen,
    populate_template,
)

PROFILE = UserProfile(
    skill_level="basic_skills",
    allergies=["Peanuts"],
    dietary_restrictions=["vegetarian"],
    kitchen_tools=["stove", "pan"],
    stove_type="gas",
    has_oven=False,
    space_level=2,
)
PREFERENCES = UserPreferences(
    dietary=DietaryPreferences(
        allergies=["shellfish", "peanuts"],
        intolerances=["lactose"],
        custom_dietary_restrictions=["no cilantro"],
    ),
)


def test_safety_section_is_deduplicated_union():
    section = build_safety_section(PROFILE, PREFERENCES)
    assert "- Allergies: peanuts, shellfish" in section
    assert "- Intolerances: lactose" in section
    assert "- Dietary Restrictions: vegetarian" in section
    assert "- Complete list to avoid: lactose, no cilantro, peanuts, shellfish, vegetarian" in section
    assert "absolute precedence" in section


def test_safety_section_matches_fingerprint_allergens():
    context = PromptContext.build(PROFILE, PREFERENCES)
    fp = fingerprint_from_context("pad thai", PROFILE, PREFERENCES)
    assert fp.allergies == context.safety.gate_allergens


def test_safety_section_without_any_data():
    section = build_safety_section(None, None)
    assert "- Allergies: None" in section
    assert "- Complete list to avoid: None" in section


def test_missing_preference_groups_render_placeholders():
    assert "has not completed advanced preference setup" in build_cooking_context_section(PROFILE, None)
    assert NOT_SPECIFIED in build_macro_section(PROFILE, None, None)
    assert f"- Confidence: {NOT_SPECIFIED}" in build_user_profile_section(PROFILE)


def test_cooking_context_section_with_data():
    prefs = UserPreferences(cooking_context=CookingContext(typical_cooking_time="quick_15min"))
    section = build_cooking_context_section(PROFILE, prefs)
    assert "- Typical Cooking Time: quick 15min" in section
    assert "- Typical Servings: 2" in section


def test_macro_section_lists_remaining_macros():
    macro = MacroContext(remaining_macros=RemainingMacros(calories=650, protein=40, carbs=70, fat=20))
    section = build_macro_section(extra=macro)
    assert "- Remaining Calories: 650" in section
    assert "- Remaining Protein: 40g" in section


def test_kitchen_constraints_flag_missing_oven():
    section = build_kitchen_constraints_section(PROFILE)
    assert "NO OVEN" in section
    assert "Limited prep space" in section
    assert describe_kitchen(PROFILE) == "Basic kitchen with gas stove, no oven, and limited space."


def test_history_section():
    assert build_history_section([]) == ""
    assert "Menemen, Congee" in build_history_section(["Menemen", "Congee"])


def test_recipe_prompt_contains_request_and_sections():
    context = PromptContext.build(PROFILE, PREFERENCES)
    prompt = PromptAssembler().recipe_generation("quick breakfast with eggs", context, ["Menemen"])
    assert 'USER REQUEST: "quick breakfast with eggs"' in prompt
    assert "CRITICAL SAFETY INFORMATION" in prompt
    assert "RECIPE HISTORY CONTEXT" in prompt
    assert "COMMON FORMATTING ERRORS TO AVOID" in prompt
    assert "{{" not in prompt


def test_user_text_braces_are_not_expanded():
    prompt = PromptAssembler().recipe_generation("soup {{history_context}}", PromptContext())
    assert 'USER REQUEST: "soup {{history_context}}"' in prompt


def test_unknown_template_raises():
    with pytest.raises(TemplateError):
        populate_template("dessert_pairing", {}, PromptContext())


def test_missing_parameter_raises():
    with pytest.raises(TemplateError):
        populate_template("cooking_advice", {}, PromptContext())


def test_other_templates_populate():
    assembler = PromptAssembler()
    context = PromptContext.build(PROFILE, PREFERENCES)
    modified = assembler.recipe_modification({"recipeName": "Toast"}, "make it vegan", context)
    assert '"recipeName": "Toast"' in modified
    assert "make it vegan" in modified
    assert "can I swap butter?" in assembler.cooking_advice("can I swap butter?", context)
    assert "2 eggs" in assembler.grocery_list("2 eggs, 1 onion")
