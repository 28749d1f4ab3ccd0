"""Schema.org JSON-LD recipe extraction."""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from recipe_ingest.app.schemas.recipe import ExtractionMethod, Recipe
from recipe_ingest.app.services.ingest.constants import DEFAULT_SERVINGS
from recipe_ingest.app.services.ingest.ingredient_parser import extract_ingredients
from recipe_ingest.app.services.ingest.models import ExtractionResult
from recipe_ingest.app.services.ingest.parsing_utils import (
    clean_text,
    coerce_keywords,
    dedupe_tags,
    extract_image,
    extract_instructions,
    parse_minutes,
    parse_nutrition,
    parse_servings,
)

logger = logging.getLogger(__name__)

JSON_LD_CONFIDENCE = 0.95


def new_draft_id() -> str:
    return f"draft-{uuid.uuid4().hex}"


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _first_text(value: Any) -> Optional[str]:
    for item in _as_list(value):
        if isinstance(item, str) and item.strip():
            return clean_text(item)
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            return clean_text(item["name"]) or None
    return None


def _times(obj: Dict[str, Any]) -> tuple[int, int]:
    prep = parse_minutes(obj.get("prepTime"))
    cook = parse_minutes(obj.get("cookTime"))
    total = parse_minutes(obj.get("totalTime"))
    if prep is None and cook is None and total:
        prep = total // 3
        cook = total - prep
    return prep or 0, cook or 0


def map_recipe(obj: Dict[str, Any]) -> Recipe:
    """Map a schema.org Recipe object onto the canonical recipe shape."""
    name = clean_text(obj.get("name") if isinstance(obj.get("name"), str) else "")
    if not name:
        raise ValueError("Recipe JSON-LD has no name")

    prep, cook = _times(obj)
    servings = parse_servings(obj.get("recipeYield"))

    tags: List[str] = []
    for category in _as_list(obj.get("recipeCategory")):
        if isinstance(category, str):
            tags.append(category)
    tags.extend(coerce_keywords(obj.get("keywords")))

    description = clean_text(obj.get("description") or "") if isinstance(obj.get("description"), str) else ""
    return Recipe(
        id=new_draft_id(),
        name=name,
        description=description or None,
        ingredients=extract_ingredients(obj.get("recipeIngredient") or obj.get("ingredients") or []),
        instructions=extract_instructions(obj.get("recipeInstructions") or []),
        cuisine=_first_text(obj.get("recipeCuisine")),
        diet_type=_first_text(obj.get("suitableForDiet")),
        prep_time_minutes=prep,
        cook_time_minutes=cook,
        servings=servings if servings and servings > 0 else DEFAULT_SERVINGS,
        nutrition=parse_nutrition(obj.get("nutrition")),
        tags=dedupe_tags(tags),
        image_url=extract_image(obj.get("image")),
    )


def extract_from_json_ld(raw_json_ld: str) -> ExtractionResult:
    """Extract a recipe from a recipe-typed JSON-LD snippet. Never raises."""
    try:
        data = json.loads(raw_json_ld)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.warning("Recipe JSON-LD failed to parse: %s", exc)
        return ExtractionResult.failed(f"Invalid JSON-LD: {exc}", "INVALID_JSON", raw_json_ld=raw_json_ld)

    if not isinstance(data, dict):
        return ExtractionResult.failed("Recipe JSON-LD is not an object", "MAPPING_FAILED", raw_json_ld=raw_json_ld)

    try:
        recipe = map_recipe(data)
    except ValueError as exc:
        logger.warning("Recipe JSON-LD mapping failed: %s", exc)
        return ExtractionResult.failed(str(exc), "MAPPING_FAILED", raw_json_ld=raw_json_ld)
    except Exception as exc:
        logger.exception("Unexpected error extracting recipe JSON-LD")
        return ExtractionResult.failed(f"Extraction error: {exc}", "EXTRACTION_ERROR", raw_json_ld=raw_json_ld)

    warnings = []
    if not recipe.ingredients:
        warnings.append("JSON-LD recipe has no ingredients")
    if not recipe.instructions:
        warnings.append("JSON-LD recipe has no instructions")
    logger.info(
        "JSON-LD recipe extracted: name=%s, ingredients=%d, steps=%d",
        recipe.name[:50],
        len(recipe.ingredients),
        len(recipe.instructions),
    )
    return ExtractionResult(
        success=True,
        recipe=recipe,
        method=ExtractionMethod.JSON_LD,
        confidence=JSON_LD_CONFIDENCE,
        warnings=warnings,
        raw_json_ld=raw_json_ld,
    )
