"""Normalize patch engine: LLM-proposed JSON patches with risk labels, validated and test-applied."""

import copy
import json
import logging
from typing import Any, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from recipe_ingest.app.schemas.ingest import (
    RISK_ORDER,
    NormalizePatchError,
    NormalizePatchOperation,
    NormalizePatchResponse,
    NormalizePatchResult,
    PatchOp,
    RiskCategory,
)
from recipe_ingest.app.schemas.recipe import Recipe
from recipe_ingest.app.services.ingest.cancellation import CancellationToken
from recipe_ingest.app.services.ingest.prompts import NORMALIZE_PHASE, get_prompt, render_prompt
from recipe_ingest.app.services.llm_client import LlmClient, extract_json_object, get_llm_client

logger = logging.getLogger(__name__)

_MISSING = object()


class PatchApplyError(Exception):
    pass


def parse_pointer(path: str) -> List[str]:
    if not path or path == "/":
        return []
    return [segment.replace("~1", "/").replace("~0", "~") for segment in path.lstrip("/").split("/")]


def _child(node: Any, segment: str) -> Any:
    if isinstance(node, dict):
        return node.get(segment, _MISSING)
    if isinstance(node, list):
        try:
            index = int(segment)
        except ValueError:
            return _MISSING
        return node[index] if 0 <= index < len(node) else _MISSING
    return _MISSING


def value_at(document: Any, path: str) -> Any:
    """Value at JSON pointer ``path``, or ``None`` when it does not exist."""
    current = document
    for segment in parse_pointer(path):
        current = _child(current, segment)
        if current is _MISSING:
            return None
    return current


def path_exists(document: Any, path: str) -> bool:
    current = document
    for segment in parse_pointer(path):
        current = _child(current, segment)
        if current is _MISSING:
            return False
    return True


def _array_index(arr: list, segment: str, allow_append: bool) -> int:
    if segment == "-" and allow_append:
        return len(arr)
    try:
        index = int(segment)
    except ValueError:
        raise PatchApplyError(f"Invalid array index: {segment}") from None
    upper = len(arr) if allow_append else len(arr) - 1
    if index < 0 or index > upper:
        raise PatchApplyError(f"Array index out of bounds: {index}")
    return index


def apply_operation(document: Any, patch: NormalizePatchOperation) -> None:
    """Apply one patch to ``document`` in place. Raises ``PatchApplyError``."""
    segments = parse_pointer(patch.path)
    if not segments:
        raise PatchApplyError("Empty path")

    parent = document
    for segment in segments[:-1]:
        parent = _child(parent, segment)
        if parent is _MISSING:
            raise PatchApplyError(f"Path segment not found: {segment}")
    last = segments[-1]
    value = copy.deepcopy(patch.value)

    if isinstance(parent, dict):
        if patch.op == PatchOp.REMOVE:
            if last not in parent:
                raise PatchApplyError(f"Key not found: {last}")
            del parent[last]
        elif patch.op == PatchOp.REPLACE and last not in parent:
            raise PatchApplyError(f"Key not found: {last}")
        else:
            parent[last] = value
    elif isinstance(parent, list):
        if patch.op == PatchOp.REMOVE:
            parent.pop(_array_index(parent, last, allow_append=False))
            return
        index = _array_index(parent, last, allow_append=True)
        if index == len(parent):
            parent.append(value)
        elif patch.op == PatchOp.ADD:
            parent.insert(index, value)
        else:
            parent[index] = value
    else:
        raise PatchApplyError(f"Cannot apply {patch.op.value} on a {type(parent).__name__} value")


def validate_patches(recipe: Recipe, patches: Sequence[NormalizePatchOperation]) -> List[str]:
    document = recipe.to_document()
    errors: List[str] = []
    for patch in patches:
        if not patch.path or not patch.path.strip():
            errors.append("Patch has empty path")
        elif not patch.path.startswith("/"):
            errors.append(f"Patch path must start with '/': {patch.path}")
        elif patch.op in (PatchOp.REPLACE, PatchOp.REMOVE) and not path_exists(document, patch.path):
            errors.append(f"Path does not exist: {patch.path}")
    return errors


def apply_patches(recipe: Recipe, patches: Sequence[NormalizePatchOperation]) -> NormalizePatchResult:
    """Test-apply ``patches`` to a copy of ``recipe``; the input is never mutated."""
    if not patches:
        return NormalizePatchResult.succeeded(recipe, [], "No patches to apply")

    original = recipe.to_document()
    document = copy.deepcopy(original)
    applied: List[NormalizePatchOperation] = []
    failed: List[NormalizePatchError] = []
    for patch in patches:
        try:
            apply_operation(document, patch)
        except PatchApplyError as exc:
            logger.warning("Failed to apply patch %s %s: %s", patch.op.value, patch.path, exc)
            failed.append(NormalizePatchError(patch=patch, error=str(exc)))
            continue
        applied.append(patch.model_copy(update={"original_value": value_at(original, patch.path)}))
        logger.debug("Applied patch: %s %s", patch.op.value, patch.path)

    try:
        normalized = Recipe.model_validate(document)
    except ValidationError as exc:
        return NormalizePatchResult.failed(f"Failed to deserialize patched recipe: {exc}")

    summary = f"Applied {len(applied)}/{len(patches)} patches"
    if failed:
        summary += f", {len(failed)} failed"
        return NormalizePatchResult.partial(normalized, applied, failed, summary)
    return NormalizePatchResult.succeeded(normalized, applied, summary)


def select_patches(
    patches: Sequence[NormalizePatchOperation],
    indices: Optional[Iterable[int]] = None,
    max_risk: Optional[RiskCategory] = None,
) -> List[NormalizePatchOperation]:
    """Subset of ``patches`` by position and/or risk ceiling, preserving order."""
    wanted = set(indices) if indices is not None else None
    selected = []
    for idx, patch in enumerate(patches):
        if wanted is not None and idx not in wanted:
            continue
        if max_risk is not None and RISK_ORDER[patch.risk_category] > RISK_ORDER[max_risk]:
            continue
        selected.append(patch)
    return selected


def render_patch_diff(recipe: Recipe, response: NormalizePatchResponse) -> str:
    """Markdown review summary of a patch set."""
    document = recipe.to_document()
    lines = [
        f"# Normalize patches for {recipe.name}",
        "",
        response.summary or "",
        "",
        f"Risk: {response.low_risk_count} low, {response.medium_risk_count} medium, "
        f"{response.high_risk_count} high",
        "",
        "| # | Op | Path | Risk | Before | After | Reason |",
        "|---|----|------|------|--------|-------|--------|",
    ]
    for idx, patch in enumerate(response.patches):
        before = value_at(document, patch.path)
        after = None if patch.op == PatchOp.REMOVE else patch.value
        cells = [
            str(idx),
            patch.op.value,
            f"`{patch.path}`",
            patch.risk_category.value,
            json.dumps(before, ensure_ascii=False) if before is not None else "",
            json.dumps(after, ensure_ascii=False) if after is not None else "",
            patch.reason.replace("|", "\\|"),
        ]
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines) + "\n"


class NormalizeService:
    def __init__(self, client: Optional[LlmClient] = None):
        self._client = client

    @property
    def client(self) -> LlmClient:
        return self._client or get_llm_client()

    async def generate_patches(
        self,
        recipe: Recipe,
        focus_areas: Optional[List[str]] = None,
        cancel: Optional[CancellationToken] = None,
        prompt_overrides: Optional[dict] = None,
    ) -> NormalizePatchResponse:
        """Ask the LLM for a patch set. Transport errors raise ``LlmClientError``."""
        logger.info("Generating normalize patches for recipe %s", recipe.id)
        prompt = render_prompt(
            get_prompt(NORMALIZE_PHASE, prompt_overrides),
            {"recipe": recipe.to_document(), "focus_areas": focus_areas or None},
        )
        cancel = cancel or CancellationToken()
        content = await cancel.run(
            self.client.complete(
                [{"role": "user", "content": prompt.user_prompt}],
                system_prompt=prompt.system_prompt,
                temperature=0.3,
                max_tokens=4096,
            )
        )
        logger.debug("LLM response for normalize: %d chars", len(content))

        try:
            response = NormalizePatchResponse.model_validate(extract_json_object(content))
        except ValueError as exc:
            logger.warning("Failed to parse normalize response: %s", exc)
            return NormalizePatchResponse(summary=f"Failed to parse LLM response: {exc}")

        logger.info(
            "Generated %d normalize patches: %d low, %d medium, %d high risk",
            len(response.patches),
            response.low_risk_count,
            response.medium_risk_count,
            response.high_risk_count,
        )
        return response
