"""LLM-backed recipe extraction with a bounded JSON repair loop."""

import json
import logging
from typing import Any, Dict, List, Optional

from recipe_ingest.app.schemas.recipe import ExtractionMethod, Ingredient, Recipe
from recipe_ingest.app.services.ingest.cancellation import CancellationToken
from recipe_ingest.app.services.ingest.constants import DEFAULT_SERVINGS
from recipe_ingest.app.services.ingest.extractors.json_ld import new_draft_id
from recipe_ingest.app.services.ingest.ingredient_parser import parse_ingredient_line
from recipe_ingest.app.services.ingest.models import ExtractionContext, ExtractionResult
from recipe_ingest.app.services.ingest.parsing_utils import clean_text, dedupe_tags, extract_instructions, parse_quantity
from recipe_ingest.app.services.ingest.prompts import (
    EXTRACT_PHASE,
    EXTRACT_REPAIR_TEMPLATE,
    RECIPE_JSON_SCHEMA,
    get_prompt,
    render_template,
    render_with_truncation,
)
from recipe_ingest.app.services.llm_client import LlmClient, LlmClientError, extract_json_object, get_llm_client

logger = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS = 2
LLM_CONFIDENCE = 0.85
LLM_REPAIRED_CONFIDENCE = 0.75


def _get(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return default
    return default


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_ingredients(items: Any) -> List[Ingredient]:
    ingredients: List[Ingredient] = []
    for item in items if isinstance(items, list) else []:
        if isinstance(item, str):
            parsed = parse_ingredient_line(item)
            if parsed:
                ingredients.append(parsed)
        elif isinstance(item, dict):
            name = _as_text(item.get("name"))
            if not name:
                continue
            quantity = item.get("quantity")
            if isinstance(quantity, (int, float)) and not isinstance(quantity, bool):
                qty = float(quantity)
            elif isinstance(quantity, str) and quantity.strip():
                qty = parse_quantity(quantity)
            else:
                qty = 1.0
            ingredients.append(
                Ingredient(name=name, quantity=qty, unit=_as_text(item.get("unit")), notes=_as_text(item.get("notes")))
            )
    return ingredients


def map_llm_recipe(data: Any) -> Recipe:
    """Map an LLM JSON object (camelCase or snake_case keys) onto the canonical recipe."""
    if isinstance(data, dict) and isinstance(data.get("recipe"), dict):
        data = data["recipe"]
    if not isinstance(data, dict):
        raise ValueError("LLM response is not a JSON object")
    name = _as_text(_get(data, "name", "title"))
    if not name:
        raise ValueError("LLM response has no recipe name")

    tags = _get(data, "tags") or []
    servings = _as_int(_get(data, "servings"), DEFAULT_SERVINGS)
    return Recipe(
        id=new_draft_id(),
        name=clean_text(name),
        description=_as_text(_get(data, "description")),
        ingredients=_parse_ingredients(_get(data, "ingredients")),
        instructions=extract_instructions(_get(data, "instructions", "steps") or []),
        cuisine=_as_text(_get(data, "cuisine")),
        diet_type=_as_text(_get(data, "dietType", "diet_type")),
        prep_time_minutes=_as_int(_get(data, "prepTimeMinutes", "prep_time_minutes")),
        cook_time_minutes=_as_int(_get(data, "cookTimeMinutes", "cook_time_minutes")),
        servings=servings,
        tags=dedupe_tags([t for t in tags if isinstance(t, str)]) if isinstance(tags, list) else [],
        image_url=_as_text(_get(data, "imageUrl", "image_url")),
    )


class LlmRecipeExtractor:
    def __init__(self, client: Optional[LlmClient] = None):
        self._client = client

    @property
    def client(self) -> LlmClient:
        return self._client or get_llm_client()

    async def extract(
        self, content: str, context: ExtractionContext, cancel: Optional[CancellationToken] = None
    ) -> ExtractionResult:
        cancel = cancel or CancellationToken()
        if not content or not content.strip():
            return ExtractionResult.failed("Content is empty", "EMPTY_CONTENT", method=ExtractionMethod.LLM)

        overrides = {EXTRACT_PHASE: context.prompt_override} if context.prompt_override else None
        prompt = render_with_truncation(
            get_prompt(EXTRACT_PHASE, overrides),
            {"url": context.url, "content": content, "schema": RECIPE_JSON_SCHEMA},
            max_characters=context.content_budget,
        )

        recipe: Optional[Recipe] = None
        last_error: Optional[str] = None
        last_response: Optional[str] = None
        attempts = 0
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt.user_prompt}]
        for attempt in range(MAX_REPAIR_ATTEMPTS + 1):
            cancel.raise_if_cancelled()
            attempts = attempt
            if attempt > 0:
                logger.debug("Attempting JSON repair (attempt %d/%d)", attempt, MAX_REPAIR_ATTEMPTS)
                messages = messages + [
                    {"role": "assistant", "content": last_response or ""},
                    {
                        "role": "user",
                        "content": render_template(
                            EXTRACT_REPAIR_TEMPLATE, {"error": last_error, "previous_response": last_response}
                        ),
                    },
                ]
            try:
                last_response = await cancel.run(
                    self.client.complete(messages, system_prompt=prompt.system_prompt, temperature=0.3, max_tokens=4096)
                )
            except LlmClientError as exc:
                last_error = f"LLM error: {exc}"
                logger.error("LLM error on attempt %d: %s", attempt, exc)
                break
            try:
                recipe = map_llm_recipe(extract_json_object(last_response))
                break
            except json.JSONDecodeError as exc:
                last_error = f"JSON parse error: {exc}"
                logger.warning("JSON parse error on attempt %d: %s", attempt, exc)
            except ValueError as exc:
                last_error = f"Failed to parse response as Recipe: {exc}"
                logger.warning("Recipe mapping failed on attempt %d: %s", attempt, exc)

        cancel.raise_if_cancelled()
        if recipe is None:
            return ExtractionResult.failed(
                last_error or "Failed to extract recipe from content",
                "LLM_EXTRACTION_FAILED",
                method=ExtractionMethod.LLM,
                repair_attempts=attempts,
            )

        logger.info("Extracted recipe '%s' using LLM (repairs: %d)", recipe.name, attempts)
        return ExtractionResult(
            success=True,
            recipe=recipe,
            method=ExtractionMethod.LLM,
            confidence=LLM_CONFIDENCE if attempts == 0 else LLM_REPAIRED_CONFIDENCE,
            repair_attempts=attempts,
        )
