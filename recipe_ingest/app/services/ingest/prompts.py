"""Prompt templates for the LLM-backed ingest phases, rendered with Jinja2.

Each phase has a default template; a task payload may override the user
template for a phase via ``prompt_overrides``. Rendering verifies that every
required variable is present before Jinja2 sees the template, and
``render_with_truncation`` shrinks the ``content`` variable to a character
budget, keeping the sections most likely to hold the recipe.
"""

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jinja2 import StrictUndefined, TemplateError
from jinja2.exceptions import SecurityError
from jinja2.sandbox import ImmutableSandboxedEnvironment

logger = logging.getLogger(__name__)

EXTRACT_PHASE = "Ingest.Extract"
NORMALIZE_PHASE = "Ingest.Normalize"
REPAIR_PARAPHRASE_PHASE = "Ingest.RepairParaphrase"

CONTENT_VARIABLE = "content"
DEFAULT_CONTENT_BUDGET = 60000


class PromptRenderError(Exception):
    def __init__(self, message: str, missing_variables: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_variables = missing_variables or []


@dataclass(frozen=True)
class PromptTemplate:
    phase: str
    system_prompt: Optional[str]
    user_template: str
    required_variables: Tuple[str, ...] = ()
    optional_variables: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RenderedPrompt:
    system_prompt: Optional[str]
    user_prompt: str
    variables: Dict[str, Any] = field(default_factory=dict)


EXTRACT_SYSTEM_PROMPT = """\
You are a recipe extraction assistant. Your task is to extract structured recipe data from web page content.

Rules:
1. Output ONLY valid JSON matching the specified schema. No markdown, no explanations.
2. Extract all recipe information accurately: name, description, ingredients, instructions, timing, and metadata.
3. DO NOT copy large verbatim blocks from the source. Summarize and rephrase descriptions while preserving meaning.
4. For ingredients: parse quantity, unit, and name separately. If parsing is uncertain, put the full text in "name" with quantity=0 and unit=null.
5. For instructions: keep each step concise but complete. Preserve temperatures, times, and key techniques.
6. Use best-effort values for cuisine, dietType, prepTimeMinutes, cookTimeMinutes, servings. Use 0 or null if unknown.
"""

EXTRACT_USER_TEMPLATE = """\
Extract a recipe from the following web page content.

**Source URL:** {{ url }}

**Page Content:**
{{ content }}

**Output Schema:**
```json
{{ schema }}
```

**Instructions:**
- Extract the recipe matching the schema above.
- Parse ingredients into structured format with quantity (a number; 1/2 = 0.5), unit, and name.
- Keep instructions as an array of step strings.
- DO NOT include large verbatim blocks. Rephrase and summarize while preserving cooking meaning.
- If timing information is not available, use 0. Convert all times to minutes.
- Set cuisine and dietType if identifiable, otherwise use null.

Output ONLY the JSON object, no additional text or markdown code blocks.
"""

RECIPE_JSON_SCHEMA = """\
{
  "type": "object",
  "required": ["name"],
  "properties": {
    "name": { "type": "string", "description": "Recipe name/title" },
    "description": { "type": "string", "description": "Brief recipe description (summarized, not verbatim)" },
    "ingredients": {
      "type": "array",
      "items": {
        "type": "object",
        "required": ["name"],
        "properties": {
          "name": { "type": "string" },
          "quantity": { "type": "number", "default": 0 },
          "unit": { "type": "string", "nullable": true },
          "notes": { "type": "string", "nullable": true }
        }
      }
    },
    "instructions": {
      "type": "array",
      "items": { "type": "string" },
      "description": "Ordered list of cooking steps"
    },
    "cuisine": { "type": "string", "nullable": true },
    "dietType": { "type": "string", "nullable": true },
    "prepTimeMinutes": { "type": "integer", "default": 0 },
    "cookTimeMinutes": { "type": "integer", "default": 0 },
    "servings": { "type": "integer", "default": 0 },
    "tags": { "type": "array", "items": { "type": "string" } },
    "imageUrl": { "type": "string", "nullable": true }
  }
}"""

EXTRACT_REPAIR_TEMPLATE = """\
Your previous response contained invalid JSON. Please fix it and return ONLY valid JSON.

Error: {{ error }}

Previous response:
{{ previous_response }}

Return ONLY the corrected JSON object with the recipe data, no markdown or extra text.
"""

NORMALIZE_SYSTEM_PROMPT = """\
You are a recipe standardization assistant. Your task is to analyze a recipe and suggest JSON Patch operations to normalize and improve the recipe data while preserving the original meaning.

Rules:
1. Output ONLY valid JSON matching the specified schema. No markdown, no explanations.
2. Suggest improvements in order of risk: low-risk formatting first, then medium-risk data changes, then high-risk content changes.
3. Be conservative. Prefer fewer high-quality changes over many minor tweaks.
4. Always include a clear reason for each patch operation.
5. Flag uncertain changes as high risk for human review.
6. If no normalizations are needed, return an empty patches array.
"""

NORMALIZE_USER_TEMPLATE = """\
Analyze the following recipe and suggest JSON Patch operations to normalize and improve it.

**Current Recipe:**
```json
{{ recipe | json }}
```

**Focus Areas:**
{% if focus_areas %}{% for area in focus_areas %}
- {{ area }}{% endfor %}
{% else %}
- All applicable normalizations
{% endif %}
**Output Schema:**
```json
{
  "patches": [
    {
      "op": "replace|add|remove",
      "path": "/json/pointer/path",
      "value": "new value (omit for remove)",
      "riskCategory": "low|medium|high",
      "reason": "Explanation for this change"
    }
  ],
  "summary": "Brief summary of all changes",
  "hasHighRiskChanges": true|false
}
```

**Risk Categories:**
- **low**: Safe formatting changes (capitalization, punctuation, unit standardization)
- **medium**: Data modifications that preserve meaning (ingredient parsing, metadata inference)
- **high**: Content changes affecting cooking (instruction modifications, error corrections)

**Guidelines:**
1. Normalize capitalization (title case for name, sentence case for descriptions)
2. Standardize units (e.g., "tbsp" -> "tablespoon", "c" -> "cup")
3. Extract preparation notes to separate field (e.g., "onion, diced" -> notes: "diced")
4. Infer missing metadata if clearly identifiable (cuisine, dietType)
5. Fix obvious parsing errors
6. DO NOT change the essential meaning or cooking process

Output ONLY the JSON object, no additional text or markdown code blocks.
"""

REPAIR_PARAPHRASE_SYSTEM_PROMPT = "You are a recipe content editor."

REPAIR_PARAPHRASE_USER_TEMPLATE = """\
Rephrase the following recipe sections to reduce verbatim similarity with the source while preserving all factual information.

## Source Text Excerpt
{{ source_excerpt }}

## Sections to Rephrase
{{ sections | json }}

## Instructions
1. Preserve all factual information: ingredients, quantities, temperatures, times
2. Rephrase in your own words. Change sentence structure and word choices
3. Maintain clarity and natural language
4. For instructions, put each step on its own line

## Output Format
Return ONLY a JSON object with the rephrased sections:
{
  "sections": [
    {
      "name": "Description",
      "rephrased_text": "Your rephrased description..."
    }
  ]
}
"""

DEFAULT_TEMPLATES: Dict[str, PromptTemplate] = {
    EXTRACT_PHASE: PromptTemplate(
        phase=EXTRACT_PHASE,
        system_prompt=EXTRACT_SYSTEM_PROMPT,
        user_template=EXTRACT_USER_TEMPLATE,
        required_variables=("url", "content", "schema"),
    ),
    NORMALIZE_PHASE: PromptTemplate(
        phase=NORMALIZE_PHASE,
        system_prompt=NORMALIZE_SYSTEM_PROMPT,
        user_template=NORMALIZE_USER_TEMPLATE,
        required_variables=("recipe",),
        optional_variables=("focus_areas",),
    ),
    REPAIR_PARAPHRASE_PHASE: PromptTemplate(
        phase=REPAIR_PARAPHRASE_PHASE,
        system_prompt=REPAIR_PARAPHRASE_SYSTEM_PROMPT,
        user_template=REPAIR_PARAPHRASE_USER_TEMPLATE,
        required_variables=("source_excerpt", "sections"),
    ),
}


def _to_json(value: Any) -> str:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json", by_alias=True)
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


# templates include user-supplied overrides
_env = ImmutableSandboxedEnvironment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)
_env.filters["json"] = _to_json


def get_prompt(phase: str, overrides: Optional[Mapping[str, str]] = None) -> PromptTemplate:
    """Active template for ``phase``: the default, with the user template replaced by an override."""
    try:
        template = DEFAULT_TEMPLATES[phase]
    except KeyError:
        raise PromptRenderError(f"No prompt template registered for phase '{phase}'") from None
    override = (overrides or {}).get(phase)
    if override and override.strip():
        logger.info("Using prompt override for phase %s", phase)
        return replace(template, user_template=override)
    return template


def validate_required_variables(variables: Mapping[str, Any], required: Tuple[str, ...]) -> None:
    missing = [name for name in required if variables.get(name) is None]
    if missing:
        raise PromptRenderError(f"Missing required variables: {', '.join(missing)}", missing_variables=missing)


def render_template(source: str, variables: Mapping[str, Any]) -> str:
    try:
        return _env.from_string(source).render(**variables)
    except SecurityError as exc:
        logger.warning("Rejected unsafe prompt template: %s", exc)
        raise PromptRenderError(f"Template uses a disallowed operation: {exc}") from exc
    except TemplateError as exc:
        raise PromptRenderError(f"Template rendering failed: {exc}") from exc


def render_prompt(template: PromptTemplate, variables: Mapping[str, Any]) -> RenderedPrompt:
    validate_required_variables(variables, template.required_variables)
    values = {name: None for name in template.optional_variables}
    values.update(variables)
    return RenderedPrompt(
        system_prompt=template.system_prompt,
        user_prompt=render_template(template.user_template, values),
        variables=values,
    )


def render_with_truncation(
    template: PromptTemplate, variables: Mapping[str, Any], max_characters: Optional[int] = None
) -> RenderedPrompt:
    values = dict(variables)
    content = values.get(CONTENT_VARIABLE)
    if max_characters and isinstance(content, str) and len(content) > max_characters:
        values[CONTENT_VARIABLE] = truncate_content(content, max_characters)
        logger.debug("Truncated prompt content from %d to %d chars", len(content), len(values[CONTENT_VARIABLE]))
    return render_prompt(template, values)


_HEADING_SPLIT = re.compile(r"(?=^#{1,6}\s)", re.MULTILINE)
_HEADING_TAG = re.compile(r"<h[1-6]", re.IGNORECASE)
_LIST_ITEM = re.compile(r"^\s*[-*•]\s|^\s*\d+\.", re.MULTILINE)
_BOILERPLATE_WORDS = ("copyright", "advertisement", "subscribe", "newsletter", "cookie")


def _parse_sections(content: str) -> List[str]:
    parts = [p for p in _HEADING_SPLIT.split(content) if p.strip()]
    if len(parts) <= 1:
        parts = [p for p in re.split(r"\r?\n\r?\n", content) if p.strip()]
    return parts


def score_section(section: str) -> int:
    score = 0
    lowered = section.lower()
    if "ingredient" in lowered:
        score += 100
    if "instruction" in lowered or "direction" in lowered or "step" in lowered:
        score += 90
    if "recipe" in lowered:
        score += 50
    if section.lstrip().startswith("#") or _HEADING_TAG.search(section):
        score += 30
    if _LIST_ITEM.search(section):
        score += 40
    if len(section) > 500 and "\n" not in section:
        score -= 20
    if any(word in lowered for word in _BOILERPLATE_WORDS):
        score -= 50
    return score


def _simple_truncate(content: str, max_characters: int) -> str:
    if len(content) <= max_characters:
        return content
    truncate_at = max(max_characters - 30, 0)
    break_point = content.rfind("\n", 0, truncate_at)
    if break_point < truncate_at - 200:
        break_point = content.rfind(" ", 0, truncate_at)
    if break_point < truncate_at - 200 or break_point < 0:
        break_point = truncate_at
    return content[:break_point].rstrip() + "\n\n...[content truncated]"


def _trim_by_importance(content: str, max_characters: int) -> str:
    sections = _parse_sections(content)
    if not sections:
        return _simple_truncate(content, max_characters)

    ranked = sorted(enumerate(sections), key=lambda item: score_section(item[1]), reverse=True)
    kept: List[Tuple[int, str]] = []
    remaining = max_characters - 50
    for index, section in ranked:
        if len(section) <= remaining:
            kept.append((index, section))
            remaining -= len(section) + 1
        elif remaining > 100:
            kept.append((index, section[:remaining] + "\n...[truncated]"))
            break
    kept.sort()
    return "\n".join(section for _, section in kept).strip()


def truncate_content(content: str, max_characters: int) -> str:
    """Shrink ``content`` to at most ``max_characters``, favouring recipe-bearing sections."""
    if not content or len(content) <= max_characters:
        return content
    trimmed = _trim_by_importance(content, max_characters)
    if trimmed and len(trimmed) <= max_characters:
        return trimmed
    return _simple_truncate(content, max_characters)
