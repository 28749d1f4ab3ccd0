import asyncio
import json

import pytest

from conftest import FakeLlmClient, SlowLlmClient, tomato_recipe
from recipe_ingest.app.schemas.ingest import NormalizePatchOperation, NormalizePatchResponse, RiskCategory
from recipe_ingest.app.services.ingest.cancellation import CancellationToken, IngestCancelledError
from recipe_ingest.app.services.ingest.normalize import (
    NormalizeService,
    apply_patches,
    parse_pointer,
    render_patch_diff,
    select_patches,
    validate_patches,
    value_at,
)
from recipe_ingest.app.services.llm_client import LlmClientError


def patch(op, path, value=None, risk="low", reason="tidy"):
    return NormalizePatchOperation(op=op, path=path, value=value, risk_category=risk, reason=reason)


def test_parse_pointer_unescapes_segments():
    assert parse_pointer("/a~1b/c~0d") == ["a/b", "c~d"]
    assert parse_pointer("/") == []


def test_value_at():
    document = tomato_recipe().to_document()
    assert value_at(document, "/ingredients/0/unit") == "lb"
    assert value_at(document, "/ingredients/9/unit") is None
    assert value_at(document, "/prepTimeMinutes") == 10


def test_apply_replace_add_and_remove():
    recipe = tomato_recipe()
    result = apply_patches(
        recipe,
        [
            patch("replace", "/name", "Tomato soup"),
            patch("replace", "/ingredients/0/unit", "pound"),
            patch("add", "/tags/-", "vegetarian"),
            patch("remove", "/ingredients/1"),
        ],
    )
    assert result.success
    assert result.summary == "Applied 4/4 patches"
    normalized = result.normalized_recipe
    assert normalized.name == "Tomato soup"
    assert normalized.ingredients[0].unit == "pound"
    assert normalized.tags == ["Soup", "tomato", "vegetarian"]
    assert [i.name for i in normalized.ingredients] == ["ripe tomatoes", "garlic", "vegetable broth", "fresh basil"]
    assert result.applied_patches[0].original_value == "Tomato Soup"
    assert recipe.name == "Tomato Soup"
    assert len(recipe.ingredients) == 5


def test_add_inserts_into_array():
    result = apply_patches(tomato_recipe(), [patch("add", "/instructions/0", "Gather everything.")])
    assert result.normalized_recipe.instructions[0] == "Gather everything."
    assert len(result.normalized_recipe.instructions) == 5


def test_partial_failure_keeps_applied_patches():
    result = apply_patches(tomato_recipe(), [patch("replace", "/cuisine", "Tuscan"), patch("replace", "/nope", 1)])
    assert not result.success
    assert result.is_partial
    assert result.summary == "Applied 1/2 patches, 1 failed"
    assert result.error == "1 patch(es) failed to apply"
    assert result.normalized_recipe.cuisine == "Tuscan"
    assert result.failed_patches[0].error == "Key not found: nope"


def test_out_of_bounds_index():
    result = apply_patches(tomato_recipe(), [patch("remove", "/instructions/10")])
    assert result.failed_patches[0].error == "Array index out of bounds: 10"


def test_patch_that_breaks_the_schema_fails():
    result = apply_patches(tomato_recipe(), [patch("replace", "/servings", "many")])
    assert not result.success
    assert result.normalized_recipe is None
    assert result.error.startswith("Failed to deserialize patched recipe")


def test_no_patches():
    result = apply_patches(tomato_recipe(), [])
    assert result.success
    assert result.summary == "No patches to apply"


def test_validate_patches():
    errors = validate_patches(
        tomato_recipe(),
        [patch("replace", "name", "x"), patch("replace", "/missing", 1), patch("add", "/dietType", "Vegan")],
    )
    assert errors == ["Patch path must start with '/': name", "Path does not exist: /missing"]


def test_select_patches_by_index_and_risk():
    patches = [patch("replace", "/name", "a", "low"), patch("replace", "/cuisine", "b", "medium"), patch("remove", "/tags/0", risk="high")]
    assert select_patches(patches, max_risk=RiskCategory.MEDIUM) == patches[:2]
    assert select_patches(patches, indices=[0, 2]) == [patches[0], patches[2]]
    assert select_patches(patches, indices=[1, 2], max_risk=RiskCategory.LOW) == []
    assert select_patches(patches) == patches


def test_render_patch_diff():
    response = NormalizePatchResponse(
        patches=[patch("replace", "/name", "Tomato soup", reason="sentence | case"), patch("remove", "/tags/1", risk="high")],
        summary="Two changes",
    )
    diff = render_patch_diff(tomato_recipe(), response)
    assert "Risk: 1 low, 0 medium, 1 high" in diff
    assert '| 0 | replace | `/name` | low | "Tomato Soup" | "Tomato soup" | sentence \\| case |' in diff
    assert '| 1 | remove | `/tags/1` | high | "tomato" |  |' in diff


LLM_PATCHES = {
    "patches": [
        {"op": "Replace", "path": "/name", "value": "Tomato soup", "riskCategory": "LOW", "reason": "Case"},
        {"op": "replace", "path": "/instructions/2", "value": "Blend well.", "riskCategory": "high", "reason": "Clarity"},
    ],
    "summary": "Tidy up",
    "hasHighRiskChanges": True,
}


@pytest.mark.asyncio
async def test_generate_patches_parses_llm_response():
    client = FakeLlmClient([json.dumps(LLM_PATCHES)])
    response = await NormalizeService(client).generate_patches(tomato_recipe(), focus_areas=["capitalization"])
    assert len(response.patches) == 2
    assert response.patches[0].op.value == "replace"
    assert response.patches[0].risk_category == RiskCategory.LOW
    assert response.has_high_risk_changes
    assert (response.low_risk_count, response.medium_risk_count, response.high_risk_count) == (1, 0, 1)
    prompt = client.calls[0]["messages"][0]["content"]
    assert '"name": "Tomato Soup"' in prompt
    assert "- capitalization" in prompt


@pytest.mark.asyncio
async def test_generate_patches_unparseable_response():
    response = await NormalizeService(FakeLlmClient(["no patches for you"])).generate_patches(tomato_recipe())
    assert response.patches == []
    assert response.summary.startswith("Failed to parse LLM response:")


@pytest.mark.asyncio
async def test_generate_patches_propagates_client_errors():
    with pytest.raises(LlmClientError):
        await NormalizeService(FakeLlmClient([])).generate_patches(tomato_recipe())


@pytest.mark.asyncio
async def test_cancel_interrupts_pending_patch_generation():
    client = SlowLlmClient(delay=3.0)
    cancel = CancellationToken()
    asyncio.get_running_loop().call_later(0.1, cancel.cancel, "user")

    with pytest.raises(IngestCancelledError):
        await asyncio.wait_for(NormalizeService(client).generate_patches(tomato_recipe(), cancel=cancel), timeout=1.5)
    assert client.started == 1
