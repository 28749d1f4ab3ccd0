"""Ingredient line parsing into quantity, unit, name and notes."""

import logging
import re
from typing import Any, List, Optional

from recipe_ingest.app.schemas.recipe import Ingredient
from recipe_ingest.app.services.ingest.constants import FRACTION_CHARS
from recipe_ingest.app.services.ingest.parsing_utils import clean_text, is_known_unit, parse_quantity

logger = logging.getLogger(__name__)

_QTY = rf"(?:\d+(?:\.\d+)?(?:\s*/\s*\d+)?|[{FRACTION_CHARS}])"
_QTY_RANGE = rf"{_QTY}(?:\s*{_QTY})*(?:\s*(?:-|–|to)\s*{_QTY}(?:\s*{_QTY})*)?"

QUANTITY_UNIT_RE = re.compile(rf"^\s*({_QTY_RANGE})\s*([A-Za-z][A-Za-z\.]*)\s+(.*)$")
QUANTITY_ONLY_RE = re.compile(rf"^\s*({_QTY_RANGE})\s+(.*)$")
PAREN_NOTES_RE = re.compile(r"\(([^)]*)\)")


def _split_notes(text: str) -> tuple[str, Optional[str]]:
    """Pull notes from parentheses or after the first comma."""
    notes: List[str] = []
    for match in PAREN_NOTES_RE.finditer(text):
        if match.group(1).strip():
            notes.append(match.group(1).strip())
    name = clean_text(PAREN_NOTES_RE.sub(" ", text))
    if "," in name:
        name, _, rest = name.partition(",")
        if rest.strip():
            notes.append(rest.strip())
    return clean_text(name), ", ".join(notes) or None


def parse_ingredient_line(line: str) -> Optional[Ingredient]:
    raw = clean_text(line)
    if not raw:
        return None

    m = QUANTITY_UNIT_RE.match(raw)
    if m and is_known_unit(m.group(2)):
        name, notes = _split_notes(m.group(3))
        if name:
            return Ingredient(name=name, quantity=parse_quantity(m.group(1)), unit=m.group(2).strip("."), notes=notes)

    m = QUANTITY_ONLY_RE.match(raw)
    if m:
        name, notes = _split_notes(m.group(2))
        if name:
            return Ingredient(name=name, quantity=parse_quantity(m.group(1)), unit=None, notes=notes)

    # unparseable: keep the text as the name
    return Ingredient(name=raw, quantity=1)


def extract_ingredients(ingredients: Any) -> List[Ingredient]:
    """Extract ingredients from a list of strings/dicts, or a single string."""
    parsed: List[Ingredient] = []
    if isinstance(ingredients, str):
        ingredients = [line for line in ingredients.splitlines() if line.strip()]
    if not isinstance(ingredients, list):
        logger.warning("Ingredients input is not a list or string: %s", type(ingredients).__name__)
        return parsed

    for idx, raw in enumerate(ingredients):
        ingredient = None
        if isinstance(raw, str):
            ingredient = parse_ingredient_line(raw)
        elif isinstance(raw, dict):
            text_val = raw.get("text") or raw.get("name")
            if isinstance(text_val, str) and text_val.strip():
                ingredient = parse_ingredient_line(text_val)
        if ingredient is None:
            logger.debug("Ingredient %d skipped (type %s)", idx, type(raw).__name__)
            continue
        parsed.append(ingredient)

    logger.info("Extracted %d ingredients from input", len(parsed))
    return parsed
