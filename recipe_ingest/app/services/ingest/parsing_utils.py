"""General parsing utilities for schema.org recipe fields."""

import re
from typing import Any, List, Optional, Sequence

from recipe_ingest.app.schemas.recipe import NutritionInfo
from recipe_ingest.app.services.ingest.constants import COMMON_UNITS, FRACTION_CHARS, FRACTION_MAP


def clean_text(text: str) -> str:
    """Normalize whitespace in text."""
    return re.sub(r"\s+", " ", text or "").strip()


def normalize_unit_token(unit: str) -> str:
    """Normalize a unit token for comparison."""
    token = unit.lower().strip(".")
    if token.endswith("es") and token[:-2] in COMMON_UNITS:
        return token[:-2]
    if token.endswith("s"):
        token = token[:-1]
    return token


def is_known_unit(unit: str) -> bool:
    """Check if a unit string is a recognized cooking unit."""
    return normalize_unit_token(unit) in COMMON_UNITS


def parse_quantity(text: Optional[str]) -> float:
    """Parse a quantity such as ``1 1/2``, ``1½``, ``0.5`` or ``2-3`` into a float.

    Ranges take their first value. Anything unparseable or non-positive yields 1.
    """
    if not text:
        return 1.0
    s = re.sub(rf"(\d)([{FRACTION_CHARS}])", r"\1 \2", text)
    # ranges: "2-3" or "2 to 3" keep the lower bound
    s = re.split(r"\s*(?:-|–|\bto\b)\s*", s.strip(), maxsplit=1)[0]
    total = 0.0
    for part in s.split():
        if part in FRACTION_MAP:
            total += FRACTION_MAP[part]
        elif "/" in part:
            num, _, den = part.partition("/")
            try:
                if float(den) != 0:
                    total += float(num) / float(den)
            except ValueError:
                continue
        else:
            try:
                total += float(part)
            except ValueError:
                continue
    return total if total > 0 else 1.0


def parse_iso8601_duration(duration: str) -> Optional[int]:
    """Parse an ISO-8601 duration string (e.g., PT1H30M, P1DT2H) into minutes."""
    if not duration:
        return None
    match = re.fullmatch(
        r"P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?",
        duration.strip().upper(),
    )
    if not match or not any(match.groups()):
        return None
    days = int(match.group(1) or 0)
    hours = int(match.group(2) or 0)
    minutes = int(match.group(3) or 0)
    seconds = float(match.group(4) or 0)
    return days * 1440 + hours * 60 + minutes + (1 if seconds >= 30 else 0)


def parse_minutes(value: Any) -> Optional[int]:
    """Parse a minutes value from various formats."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        iso_minutes = parse_iso8601_duration(value)
        if iso_minutes is not None:
            return iso_minutes
        match = re.search(r"(\d+)\s*(min|minute|minutes)", value, flags=re.I)
        if match:
            return int(match.group(1))
        match = re.search(r"(\d+)\s*(h|hr|hrs|hour|hours)\b", value, flags=re.I)
        if match:
            return int(match.group(1)) * 60
    return None


def parse_servings(value: Any) -> Optional[int]:
    """Parse servings from a number, string or list (first number wins)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        match = re.search(r"\d+", value)
        if match:
            return int(match.group())
        return None
    if isinstance(value, list):
        for item in value:
            servings = parse_servings(item)
            if servings is not None:
                return servings
    return None


def extract_image(value: Any) -> Optional[str]:
    """Extract image URL from string, list or ImageObject forms."""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        url = value.get("url") or value.get("contentUrl")
        return url.strip() if isinstance(url, str) and url.strip() else None
    if isinstance(value, list):
        for item in value:
            image = extract_image(item)
            if image:
                return image
    return None


_NUMBERED_SPLIT = re.compile(r"(?<=\.)\s*(?=\d+\.)")


def _split_instruction_string(text: str) -> List[str]:
    lines = [line for line in re.split(r"\r?\n", text) if line.strip()]
    if len(lines) <= 1:
        lines = _NUMBERED_SPLIT.split(text)
    return [clean_text(line) for line in lines if clean_text(line)]


def extract_instructions(instructions: Any) -> List[str]:
    """Extract step text from strings, lists, HowToStep and HowToSection objects."""
    steps: List[str] = []
    if isinstance(instructions, str):
        steps.extend(_split_instruction_string(instructions))
    elif isinstance(instructions, list):
        for entry in instructions:
            steps.extend(extract_instructions(entry))
    elif isinstance(instructions, dict):
        nested = instructions.get("itemListElement")
        if nested:
            steps.extend(extract_instructions(nested))
        else:
            text_val = instructions.get("text") or instructions.get("name") or instructions.get("description")
            cleaned = clean_text(text_val if isinstance(text_val, str) else "")
            if cleaned:
                steps.append(cleaned)
    return steps


def coerce_keywords(value: Any) -> List[str]:
    """Split comma separated keywords (string or list) into clean tags."""
    if not value:
        return []
    raw_tags: List[str] = []
    if isinstance(value, str):
        raw_tags = [kw.strip() for kw in value.split(",") if kw.strip()]
    elif isinstance(value, Sequence):
        for item in value:
            if isinstance(item, str):
                raw_tags.extend(kw.strip() for kw in item.split(",") if kw.strip())
    return raw_tags


def dedupe_tags(tags: List[str]) -> List[str]:
    """Deduplicate (case-insensitive), keeping first spelling."""
    seen = set()
    unique_tags = []
    for tag in tags:
        cleaned = clean_text(tag)
        if cleaned and cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            unique_tags.append(cleaned)
    return unique_tags


def parse_nutrition_value(value: Any) -> Optional[float]:
    """Parse ``"240 kcal"``, ``"12g"`` or plain numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = re.search(r"[\d.]+", value.replace(",", ""))
        if match:
            try:
                return float(match.group())
            except ValueError:
                return None
    return None


def parse_nutrition(value: Any) -> Optional[NutritionInfo]:
    if not isinstance(value, dict):
        return None
    nutrition = NutritionInfo(
        calories=parse_nutrition_value(value.get("calories")),
        protein_grams=parse_nutrition_value(value.get("proteinContent")),
        carbs_grams=parse_nutrition_value(value.get("carbohydrateContent")),
        fat_grams=parse_nutrition_value(value.get("fatContent")),
        fiber_grams=parse_nutrition_value(value.get("fiberContent")),
        sugar_grams=parse_nutrition_value(value.get("sugarContent")),
        sodium_mg=parse_nutrition_value(value.get("sodiumContent")),
    )
    if all(v is None for v in nutrition.model_dump().values()):
        return None
    return nutrition
