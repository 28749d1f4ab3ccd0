import json

import httpx
import pytest

from conftest import TOMATO_SOUP_HTML, TOMATO_SOUP_JSON_LD, FakeLlmClient, make_fetcher, tomato_recipe
from recipe_ingest.app.schemas.ingest import IngestPayload
from recipe_ingest.app.schemas.recipe import ExtractionMethod
from recipe_ingest.app.services.ingest.cancellation import CancellationToken, IngestCancelledError
from recipe_ingest.app.services.ingest.extractors import LlmRecipeExtractor
from recipe_ingest.app.services.ingest.normalize import NormalizeService
from recipe_ingest.app.services.ingest.orchestrator import ExtractionOrchestrator
from recipe_ingest.app.services.ingest.phase_runner import (
    NORMALIZE_PHASE_WEIGHTS,
    IngestPhaseRunner,
    LoadedRecipe,
    calculate_progress,
)
from recipe_ingest.app.services.ingest.policy import is_committable
from recipe_ingest.app.services.ingest.repair_paraphrase import RepairParaphraseService
from recipe_ingest.app.services.ingest.search import SearchProviderResolver
from recipe_ingest.app.services.ingest.search.brave import BraveSearchProvider
from recipe_ingest.app.services.ingest.similarity import GuardrailThresholds, SimilarityDetector

INSTRUCTIONS = [step["text"] for step in TOMATO_SOUP_JSON_LD["recipeInstructions"]]

COPIED_HTML = f"""
<html><head><script type="application/ld+json">{json.dumps(TOMATO_SOUP_JSON_LD)}</script></head>
<body><h1>Tomato Soup</h1><ol>{"".join(f"<li>{step}</li>" for step in INSTRUCTIONS)}</ol></body></html>
"""

REPHRASED = {
    "sections": [
        {
            "name": "Instructions",
            "rephrased_text": (
                "1. Cook onion with garlic until soft.\n"
                "2. Pour in tomato and stock; let it bubble gently.\n"
                "3. Puree everything.\n"
                "4. Finish with basil, salt and pepper."
            ),
        }
    ]
}


class RecordingProgress:
    def __init__(self, on_report=None):
        self.events = []
        self.on_report = on_report

    def report(self, phase, progress, message):
        self.events.append((phase, progress, message))
        if self.on_report:
            self.on_report(phase, progress, message)


def page_handler(html=TOMATO_SOUP_HTML):
    def handler(request):
        return httpx.Response(200, text=html, headers={"content-type": "text/html; charset=utf-8"})

    return handler


def make_runner(artifact_factory, handler=None, llm=None, **kwargs):
    llm = llm or FakeLlmClient()
    detector = SimilarityDetector(GuardrailThresholds())
    kwargs.setdefault("progress", RecordingProgress())
    kwargs.setdefault("auto_repair", True)
    return IngestPhaseRunner(
        fetcher=make_fetcher(handler or page_handler()),
        orchestrator=ExtractionOrchestrator(LlmRecipeExtractor(llm)),
        detector=detector,
        repair_service=RepairParaphraseService(detector, llm),
        normalize_service=NormalizeService(llm),
        artifact_factory=artifact_factory,
        max_discovery_candidates=3,
        content_budget=20000,
        **kwargs,
    )


def test_calculate_progress():
    assert calculate_progress("Ingest.Fetch", 0) == 0
    assert calculate_progress("Ingest.Fetch") == 15
    assert calculate_progress("Ingest.Extract", 20) == 22
    assert calculate_progress("Finalize") == 100
    assert calculate_progress("Ingest.Normalize", 50, NORMALIZE_PHASE_WEIGHTS) == 45
    assert calculate_progress("Nope") == 0


@pytest.mark.asyncio
async def test_url_ingest_produces_review_draft(artifact_factory):
    runner = make_runner(artifact_factory)
    result = await runner.run("task-1", "thread-1", {"mode": "url", "url": "https://example.com/tomato-soup"})

    assert result.success, result.error
    draft = result.draft
    assert draft.recipe.name == "Tomato Soup"
    assert len(draft.recipe.ingredients) == 5
    assert len(draft.recipe.instructions) == 4
    assert draft.source.extraction_method == ExtractionMethod.JSON_LD
    assert draft.source.url == "https://example.com/tomato-soup"
    assert draft.source.site_name == "Example Kitchen"
    assert draft.source.author == "Sam Cook"
    assert draft.validation_report.errors == []
    assert draft.similarity_report is not None
    assert not draft.similarity_report.violates_policy
    assert is_committable(draft)

    types = {ref.type for ref in draft.artifacts}
    assert {
        "raw.html",
        "sanitized.txt",
        "page_meta.json",
        "jsonld.json",
        "extraction.json",
        "validation.json",
        "similarity.json",
        "recipe.json",
    } <= types

    progress = [p for _, p, _ in runner.progress.events]
    assert progress == sorted(progress)
    assert runner.progress.events[-1] == ("Finalize", 100, "Completed")


@pytest.mark.asyncio
async def test_copied_instructions_are_repaired(artifact_factory):
    llm = FakeLlmClient([json.dumps(REPHRASED)])
    runner = make_runner(artifact_factory, page_handler(COPIED_HTML), llm)
    result = await runner.run("task-1", "thread-1", IngestPayload(mode="Url", url="https://example.com/copied"))

    assert result.success
    draft = result.draft
    assert draft.recipe.instructions[0] == "Cook onion with garlic until soft."
    assert not draft.similarity_report.violates_policy
    assert not any("SIMILARITY_VIOLATION" in e for e in draft.validation_report.errors)
    assert "repair.json" in {ref.type for ref in draft.artifacts}
    assert ("Ingest.RepairParaphrase", 85, "Repair successful") in runner.progress.events


@pytest.mark.asyncio
async def test_copied_instructions_without_auto_repair_block_commit(artifact_factory):
    llm = FakeLlmClient()
    runner = make_runner(artifact_factory, page_handler(COPIED_HTML), llm, auto_repair=False)
    result = await runner.run("task-1", "thread-1", {"mode": "Url", "url": "https://example.com/copied"})

    assert result.success
    draft = result.draft
    assert draft.similarity_report.violates_policy
    assert any(e.startswith("[SIMILARITY_VIOLATION] Similarity:") for e in draft.validation_report.errors)
    assert not is_committable(draft)
    assert llm.calls == []
    assert ("Ingest.RepairParaphrase", 85, "AutoRepair disabled") in runner.progress.events


@pytest.mark.asyncio
async def test_invalid_url_fails_in_fetch(artifact_factory):
    result = await make_runner(artifact_factory).run("task-1", "thread-1", {"mode": "Url", "url": "ftp://example.com/x"})
    assert not result.success
    assert result.error_code == "INVALID_URL"
    assert result.failed_phase == "Ingest.Fetch"


@pytest.mark.asyncio
async def test_http_error_fails_in_fetch(artifact_factory):
    runner = make_runner(artifact_factory, lambda request: httpx.Response(404))
    result = await runner.run("task-1", "thread-1", {"mode": "Url", "url": "https://example.com/missing"})
    assert result.error_code == "HTTP_404"
    assert result.failed_phase == "Ingest.Fetch"


@pytest.mark.asyncio
async def test_llm_failure_fails_in_extract(artifact_factory):
    html = "<html><body><p>Just some words about cooking.</p></body></html>"
    runner = make_runner(artifact_factory, page_handler(html), FakeLlmClient(["nope", "nope", "nope"]))
    result = await runner.run("task-1", "thread-1", {"mode": "Url", "url": "https://example.com/blog"})
    assert result.error_code == "LLM_EXTRACTION_FAILED"
    assert result.failed_phase == "Ingest.Extract"


@pytest.mark.asyncio
async def test_invalid_payload(artifact_factory):
    result = await make_runner(artifact_factory).run("task-1", "thread-1", {"mode": "Bogus"})
    assert result.error_code == "INVALID_PAYLOAD"
    assert result.failed_phase == "Initialization"


@pytest.mark.asyncio
async def test_missing_url(artifact_factory):
    result = await make_runner(artifact_factory).run("task-1", "thread-1", {"mode": "Url"})
    assert result.error_code == "MISSING_URL"


@pytest.mark.asyncio
async def test_cancellation_propagates(artifact_factory):
    cancel = CancellationToken()

    def cancel_after_fetch(phase, progress, message):
        if phase == "Ingest.Fetch" and progress == 15:
            cancel.cancel("user")

    runner = make_runner(artifact_factory, progress=RecordingProgress(cancel_after_fetch))
    with pytest.raises(IngestCancelledError):
        await runner.run("task-1", "thread-1", {"mode": "Url", "url": "https://example.com/tomato-soup"}, cancel)
    assert all(phase == "Ingest.Fetch" for phase, _, _ in runner.progress.events)


def brave_resolver(results):
    def handler(request):
        return httpx.Response(200, json={"web": {"results": results}})

    provider = BraveSearchProvider(
        api_key="key",
        endpoint="https://api.search.brave.com/res/v1/web/search",
        max_results=10,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )
    return SearchProviderResolver([provider], default_provider_id="brave")


@pytest.mark.asyncio
async def test_query_mode_falls_through_to_next_candidate(artifact_factory):
    def handler(request):
        if request.url.path == "/broken":
            return httpx.Response(404)
        return httpx.Response(200, text=TOMATO_SOUP_HTML)

    resolver = brave_resolver([{"url": "https://a.example/broken"}, {"url": "https://b.example/soup"}])
    runner = make_runner(artifact_factory, handler, search_resolver=resolver)
    result = await runner.run("task-1", "thread-1", {"mode": "Query", "query": "tomato soup"})

    assert result.success
    assert result.draft.source.url == "https://b.example/soup"
    messages = [m for phase, _, m in runner.progress.events if phase == "Ingest.Fetch"]
    assert "Fetching candidate 1/2: https://a.example/broken" in messages
    assert "Fetching candidate 2/2: https://b.example/soup" in messages


@pytest.mark.asyncio
async def test_query_mode_without_results(artifact_factory):
    runner = make_runner(artifact_factory, search_resolver=brave_resolver([]))
    result = await runner.run("task-1", "thread-1", {"mode": "Query", "query": "unobtainium pie"})
    assert result.error_code == "NO_SEARCH_RESULTS"
    assert result.failed_phase == "Ingest.Fetch"


@pytest.mark.asyncio
async def test_query_mode_all_candidates_fail(artifact_factory):
    resolver = brave_resolver([{"url": "https://a.example/1"}, {"url": "https://b.example/2"}])
    runner = make_runner(artifact_factory, lambda request: httpx.Response(404), search_resolver=resolver)
    result = await runner.run("task-1", "thread-1", {"mode": "Query", "query": "soup"})
    assert result.error_code == "HTTP_404"
    assert result.error.startswith("None of 2 search candidates could be fetched")


@pytest.mark.asyncio
async def test_query_mode_unknown_provider(artifact_factory):
    runner = make_runner(artifact_factory, search_resolver=brave_resolver([]))
    payload = {"mode": "Query", "query": "soup", "search": {"providerId": "bing"}}
    result = await runner.run("task-1", "thread-1", payload)
    assert result.error_code == "SEARCH_FAILED"


NORMALIZE_PATCHES = {
    "patches": [
        {"op": "replace", "path": "/name", "value": "Tomato soup", "riskCategory": "low", "reason": "Case"},
        {"op": "replace", "path": "/missing", "value": 1, "riskCategory": "medium", "reason": "Bogus"},
    ],
    "summary": "Tidy",
}


@pytest.mark.asyncio
async def test_normalize_mode_proposes_patches(artifact_factory):
    llm = FakeLlmClient([json.dumps(NORMALIZE_PATCHES)])
    runner = make_runner(artifact_factory, llm=llm, recipe_loader=lambda recipe_id: LoadedRecipe(tomato_recipe()))
    payload = {"mode": "Normalize", "recipeId": "recipe-1", "normalizeOptions": {"focusAreas": ["capitalization"]}}
    result = await runner.run("task-1", "thread-1", payload)

    assert result.success, result.error
    draft = result.draft
    assert draft.recipe == tomato_recipe()
    assert draft.original_recipe == tomato_recipe()
    assert draft.source.extraction_method == ExtractionMethod.MANUAL
    assert len(draft.normalize_patches.patches) == 2
    assert draft.normalize_patches.patches[0].original_value == "Tomato Soup"
    assert "[PATCH_APPLY_FAILED] Patches: 1 patch(es) failed to apply" in draft.validation_report.warnings
    assert {"normalize.patch.json", "normalize.diff.md"} <= {ref.type for ref in draft.artifacts}
    assert runner.progress.events[-1] == ("Finalize", 100, "Completed")
    assert "- capitalization" in llm.calls[0]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_normalize_mode_recipe_not_found(artifact_factory):
    runner = make_runner(artifact_factory, recipe_loader=lambda recipe_id: None)
    result = await runner.run("task-1", "thread-1", {"mode": "Normalize", "recipeId": "nope"})
    assert result.error_code == "RECIPE_NOT_FOUND"
    assert result.failed_phase == "Ingest.LoadRecipe"


@pytest.mark.asyncio
async def test_normalize_mode_llm_failure(artifact_factory):
    runner = make_runner(artifact_factory, recipe_loader=lambda recipe_id: LoadedRecipe(tomato_recipe()))
    result = await runner.run("task-1", "thread-1", {"mode": "Normalize", "recipeId": "recipe-1"})
    assert result.error_code == "NORMALIZE_FAILED"
    assert result.failed_phase == "Ingest.Normalize"
