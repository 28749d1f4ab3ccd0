"""Schema (blocking) and business (advisory) validation of extracted recipes."""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List
from urllib.parse import urlparse

from recipe_ingest.app.schemas.ingest import ValidationReport
from recipe_ingest.app.schemas.recipe import Recipe

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_INGREDIENT_NAME_LENGTH = 200
MAX_INSTRUCTION_LENGTH = 2000
MAX_TAG_LENGTH = 50
MAX_TAG_COUNT = 20
MAX_INGREDIENTS = 100
MAX_INSTRUCTIONS = 100

MAX_REASONABLE_PREP_MINUTES = 24 * 60
MAX_REASONABLE_COOK_MINUTES = 72 * 60
MAX_REASONABLE_SERVINGS = 100
WARN_NO_DESCRIPTION_MIN_INGREDIENTS = 3


@dataclass
class ValidationIssue:
    code: str
    field: str
    message: str

    def format(self) -> str:
        return f"[{self.code}] {self.field}: {self.message}"


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def schema_errors(recipe: Recipe) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    add = lambda code, field, message: issues.append(ValidationIssue(code, field, message))  # noqa: E731

    if not recipe.name or not recipe.name.strip():
        add("REQUIRED_NAME", "Name", "Recipe name is required")
    elif len(recipe.name) > MAX_NAME_LENGTH:
        add("NAME_TOO_LONG", "Name", f"Recipe name exceeds maximum length of {MAX_NAME_LENGTH} characters")

    if recipe.description and len(recipe.description) > MAX_DESCRIPTION_LENGTH:
        add(
            "DESCRIPTION_TOO_LONG",
            "Description",
            f"Description exceeds maximum length of {MAX_DESCRIPTION_LENGTH} characters",
        )
    if recipe.prep_time_minutes < 0:
        add("NEGATIVE_PREP_TIME", "PrepTimeMinutes", "Prep time cannot be negative")
    if recipe.cook_time_minutes < 0:
        add("NEGATIVE_COOK_TIME", "CookTimeMinutes", "Cook time cannot be negative")
    if recipe.servings <= 0:
        add("INVALID_SERVINGS", "Servings", "Servings must be a positive number")

    if not recipe.ingredients:
        add("NO_INGREDIENTS", "Ingredients", "Recipe must have at least one ingredient")
    elif len(recipe.ingredients) > MAX_INGREDIENTS:
        add("TOO_MANY_INGREDIENTS", "Ingredients", f"Recipe has too many ingredients (max {MAX_INGREDIENTS})")
    for i, ingredient in enumerate(recipe.ingredients):
        if not ingredient.name or not ingredient.name.strip():
            add("INGREDIENT_NO_NAME", f"Ingredients[{i}].Name", f"Ingredient at position {i + 1} has no name")
        elif len(ingredient.name) > MAX_INGREDIENT_NAME_LENGTH:
            add(
                "INGREDIENT_NAME_TOO_LONG",
                f"Ingredients[{i}].Name",
                f"Ingredient name at position {i + 1} is too long (max {MAX_INGREDIENT_NAME_LENGTH})",
            )
        if ingredient.quantity < 0:
            add(
                "NEGATIVE_INGREDIENT_QUANTITY",
                f"Ingredients[{i}].Quantity",
                f"Ingredient quantity at position {i + 1} cannot be negative",
            )

    if not recipe.instructions:
        add("NO_INSTRUCTIONS", "Instructions", "Recipe must have at least one instruction")
    elif len(recipe.instructions) > MAX_INSTRUCTIONS:
        add("TOO_MANY_INSTRUCTIONS", "Instructions", f"Recipe has too many instructions (max {MAX_INSTRUCTIONS})")
    for i, step in enumerate(recipe.instructions):
        if not step or not step.strip():
            add("EMPTY_INSTRUCTION", f"Instructions[{i}]", f"Instruction at step {i + 1} is empty")
        elif len(step) > MAX_INSTRUCTION_LENGTH:
            add(
                "INSTRUCTION_TOO_LONG",
                f"Instructions[{i}]",
                f"Instruction at step {i + 1} is too long (max {MAX_INSTRUCTION_LENGTH})",
            )

    if len(recipe.tags) > MAX_TAG_COUNT:
        add("TOO_MANY_TAGS", "Tags", f"Recipe has too many tags (max {MAX_TAG_COUNT})")
    for tag in recipe.tags:
        if len(tag) > MAX_TAG_LENGTH:
            add("TAG_TOO_LONG", "Tags", f"Tag '{tag[:20]}...' is too long (max {MAX_TAG_LENGTH})")

    if recipe.image_url and not _is_http_url(recipe.image_url):
        add("INVALID_IMAGE_URL", "ImageUrl", "Image URL is not a valid HTTP/HTTPS URL")
    return issues


def business_warnings(recipe: Recipe) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    add = lambda code, field, message: issues.append(ValidationIssue(code, field, message))  # noqa: E731

    if recipe.prep_time_minutes > MAX_REASONABLE_PREP_MINUTES:
        add(
            "LONG_PREP_TIME",
            "PrepTimeMinutes",
            f"Prep time of {recipe.prep_time_minutes} minutes ({recipe.prep_time_minutes // 60} hours) "
            "seems unusually long",
        )
    if recipe.cook_time_minutes > MAX_REASONABLE_COOK_MINUTES:
        add(
            "LONG_COOK_TIME",
            "CookTimeMinutes",
            f"Cook time of {recipe.cook_time_minutes} minutes ({recipe.cook_time_minutes // 60} hours) "
            "seems unusually long",
        )
    if recipe.prep_time_minutes == 0 and recipe.cook_time_minutes == 0:
        add("NO_TIME_ESTIMATES", "PrepTimeMinutes", "Both prep time and cook time are zero; consider adding estimates")
    if recipe.servings > MAX_REASONABLE_SERVINGS:
        add("HIGH_SERVINGS", "Servings", f"Serving size of {recipe.servings} seems unusually high")

    description = (recipe.description or "").strip()
    if not description and len(recipe.ingredients) >= WARN_NO_DESCRIPTION_MIN_INGREDIENTS:
        add("MISSING_DESCRIPTION", "Description", "Recipe has no description")
    if description and len(recipe.description) < 20:
        add("SHORT_DESCRIPTION", "Description", "Recipe description is very short")
    if not (recipe.cuisine or "").strip():
        add("MISSING_CUISINE", "Cuisine", "No cuisine type specified")
    if not recipe.tags:
        add("NO_TAGS", "Tags", "No tags specified")
    if not (recipe.image_url or "").strip():
        add("NO_IMAGE", "ImageUrl", "No image URL specified")
    if len(recipe.ingredients) < 3 and len(recipe.instructions) > 5:
        add("FEW_INGREDIENTS", "Ingredients", "Recipe has many instructions but few ingredients")
    if len(recipe.instructions) < 2 and len(recipe.ingredients) > 5:
        add("FEW_INSTRUCTIONS", "Instructions", "Recipe has many ingredients but few instructions")

    counts = Counter((i.name or "").strip().lower() for i in recipe.ingredients)
    duplicates = [name for name, count in counts.items() if count > 1]
    if duplicates:
        add("DUPLICATE_INGREDIENTS", "Ingredients", f"Recipe has duplicate ingredients: {', '.join(duplicates)}")

    zero_quantity = sum(1 for i in recipe.ingredients if i.quantity == 0)
    if zero_quantity:
        add("ZERO_QUANTITY_INGREDIENTS", "Ingredients", f"{zero_quantity} ingredient(s) have zero quantity")
    return issues


def validate_recipe(recipe: Recipe) -> ValidationReport:
    errors = [issue.format() for issue in schema_errors(recipe)]
    warnings = [issue.format() for issue in business_warnings(recipe)]
    logger.debug("Validated recipe '%s': %d errors, %d warnings", recipe.name, len(errors), len(warnings))
    return ValidationReport(errors=errors, warnings=warnings)
