"""
Ingest phase runner.

Sequences fetch, sanitize, extraction, validation, similarity screening and
repair for Url/Query tasks, and LoadRecipe/Normalize for Normalize tasks.
Every transition is reported through the progress callback; failures become
an ``IngestPipelineResult`` carrying ``(phase, error_code, message)``.
Cancellation is never converted into a result.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Protocol

from pydantic import BaseModel, ValidationError

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.schemas.ingest import (
    ArtifactRef,
    IngestMode,
    IngestPayload,
    NormalizePatchResponse,
    NormalizePatchResult,
    RecipeDraft,
    SimilarityReport,
    ValidationReport,
)
from recipe_ingest.app.schemas.recipe import ExtractionMethod, Recipe, RecipeSource
from recipe_ingest.app.services.ingest import artifacts as artifact_types
from recipe_ingest.app.services.ingest.artifacts import TaskArtifacts
from recipe_ingest.app.services.ingest.cancellation import CancellationToken, IngestCancelledError
from recipe_ingest.app.services.ingest.fetcher import Fetcher, FetchResult
from recipe_ingest.app.services.ingest.models import ExtractionContext, ExtractionResult
from recipe_ingest.app.services.ingest.normalize import (
    NormalizeService,
    apply_patches,
    render_patch_diff,
    validate_patches,
)
from recipe_ingest.app.services.ingest.orchestrator import ExtractionOrchestrator
from recipe_ingest.app.services.ingest.prompts import EXTRACT_PHASE
from recipe_ingest.app.services.ingest.repair_paraphrase import RepairParaphraseResult, RepairParaphraseService
from recipe_ingest.app.services.ingest.sanitizer import SanitizedContent, sanitize
from recipe_ingest.app.services.ingest.search import (
    SearchProviderNotFoundError,
    SearchProviderResolver,
    SearchRequest,
    get_search_resolver,
)
from recipe_ingest.app.services.ingest.similarity import SimilarityDetector, SimilarityLevel, recipe_sections
from recipe_ingest.app.services.ingest.url_utils import hash_url
from recipe_ingest.app.services.ingest.validator import validate_recipe
from recipe_ingest.app.services.llm_client import LlmClientError

logger = logging.getLogger(__name__)

PHASE_INITIALIZATION = "Initialization"
PHASE_FETCH = "Ingest.Fetch"
PHASE_EXTRACT = "Ingest.Extract"
PHASE_VALIDATE = "Ingest.Validate"
PHASE_REPAIR_PARAPHRASE = "Ingest.RepairParaphrase"
PHASE_REVIEW_READY = "Ingest.ReviewReady"
PHASE_LOAD_RECIPE = "Ingest.LoadRecipe"
PHASE_NORMALIZE = "Ingest.Normalize"
PHASE_FINALIZE = "Finalize"
PHASE_UNKNOWN = "Unknown"

URL_PHASE_WEIGHTS: Dict[str, int] = {
    PHASE_FETCH: 15,
    PHASE_EXTRACT: 35,
    PHASE_VALIDATE: 20,
    PHASE_REPAIR_PARAPHRASE: 15,
    PHASE_REVIEW_READY: 10,
    PHASE_FINALIZE: 5,
}

NORMALIZE_PHASE_WEIGHTS: Dict[str, int] = {
    PHASE_LOAD_RECIPE: 10,
    PHASE_NORMALIZE: 70,
    PHASE_REVIEW_READY: 15,
    PHASE_FINALIZE: 5,
}

# Fetcher codes for URLs rejected before any I/O
URL_VALIDATION_CODES = {"EMPTY_URL", "INVALID_URL_FORMAT", "INVALID_SCHEME", "CREDENTIALS_IN_URL", "LOCAL_RESOURCE"}


def calculate_progress(phase: str, phase_progress: int = 100, weights: Mapping[str, int] = URL_PHASE_WEIGHTS) -> int:
    """Cumulative progress when ``phase`` is ``phase_progress`` percent done."""
    if phase not in weights:
        return 0
    completed = 0
    for name, weight in weights.items():
        if name == phase:
            return completed + int(weight * (phase_progress / 100.0))
        completed += weight
    return completed


class IngestPipelineError(Exception):
    def __init__(self, message: str, error_code: str, phase: str):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.phase = phase


class IngestPipelineResult(BaseModel):
    success: bool
    draft: Optional[RecipeDraft] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    failed_phase: Optional[str] = None


class LoadedRecipe(NamedTuple):
    recipe: Recipe
    source: Optional[RecipeSource] = None


class ProgressSink(Protocol):
    def report(self, phase: str, progress: int, message: str) -> Any:
        ...


class _NullProgress:
    def report(self, phase: str, progress: int, message: str) -> None:
        logger.debug("%s %d%%: %s", phase, progress, message)


@dataclass
class PipelineContext:
    """Scratch state for one run; owned by that run only."""

    task_id: str
    thread_id: str
    payload: IngestPayload
    cancel: CancellationToken
    store: TaskArtifacts
    url: Optional[str] = None
    fetch_result: Optional[FetchResult] = None
    sanitized: Optional[SanitizedContent] = None
    extraction: Optional[ExtractionResult] = None
    draft: Optional[RecipeDraft] = None
    validation_report: Optional[ValidationReport] = None
    similarity_report: Optional[SimilarityReport] = None
    repair_result: Optional[RepairParaphraseResult] = None
    original_recipe: Optional[Recipe] = None
    original_source: Optional[RecipeSource] = None
    normalize_response: Optional[NormalizePatchResponse] = None
    normalize_result: Optional[NormalizePatchResult] = None
    artifacts: List[ArtifactRef] = field(default_factory=list)

    @property
    def source_text(self) -> str:
        return self.sanitized.text_content if self.sanitized else ""


class IngestPhaseRunner:
    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        orchestrator: Optional[ExtractionOrchestrator] = None,
        detector: Optional[SimilarityDetector] = None,
        repair_service: Optional[RepairParaphraseService] = None,
        normalize_service: Optional[NormalizeService] = None,
        search_resolver: Optional[SearchProviderResolver] = None,
        recipe_loader: Optional[Callable[[str], Optional[LoadedRecipe]]] = None,
        progress: Optional[ProgressSink] = None,
        artifact_factory: Optional[Callable[[str, str], TaskArtifacts]] = None,
        auto_repair: Optional[bool] = None,
        max_discovery_candidates: Optional[int] = None,
        content_budget: Optional[int] = None,
    ):
        settings = get_settings()
        self.fetcher = fetcher or Fetcher()
        self.orchestrator = orchestrator or ExtractionOrchestrator()
        self.detector = detector or SimilarityDetector()
        self.repair_service = repair_service or RepairParaphraseService(self.detector)
        self.normalize_service = normalize_service or NormalizeService()
        self._search_resolver = search_resolver
        self.recipe_loader = recipe_loader
        self.progress = progress or _NullProgress()
        self.artifact_factory = artifact_factory or TaskArtifacts
        self.auto_repair = settings.guardrail_auto_repair_on_error if auto_repair is None else auto_repair
        self.max_discovery_candidates = max_discovery_candidates or settings.ingest_max_discovery_candidates
        self.content_budget = content_budget or settings.ingest_content_character_budget

    @property
    def search_resolver(self) -> SearchProviderResolver:
        return self._search_resolver or get_search_resolver()

    async def run(
        self,
        task_id: str,
        thread_id: str,
        payload: Any,
        cancel: Optional[CancellationToken] = None,
    ) -> IngestPipelineResult:
        logger.info("Starting ingest pipeline for task %s", task_id)
        try:
            parsed = payload if isinstance(payload, IngestPayload) else IngestPayload.model_validate(payload)
        except ValidationError as exc:
            logger.error("Failed to parse ingest payload for task %s: %s", task_id, exc)
            return IngestPipelineResult(
                success=False,
                error="Invalid ingest payload format",
                error_code="INVALID_PAYLOAD",
                failed_phase=PHASE_INITIALIZATION,
            )

        ctx = PipelineContext(
            task_id=task_id,
            thread_id=thread_id,
            payload=parsed,
            cancel=cancel or CancellationToken(),
            store=self.artifact_factory(thread_id, task_id),
        )
        try:
            if parsed.mode == IngestMode.NORMALIZE:
                await self._run_normalize(ctx)
            else:
                await self._run_ingest(ctx)
        except IngestPipelineError as exc:
            logger.error("Ingest pipeline failed at phase %s for task %s: %s", exc.phase, task_id, exc.message)
            return IngestPipelineResult(
                success=False, error=exc.message, error_code=exc.error_code, failed_phase=exc.phase
            )
        except IngestCancelledError:
            logger.warning("Ingest pipeline cancelled for task %s", task_id)
            raise
        except Exception as exc:
            logger.exception("Unexpected error in ingest pipeline for task %s", task_id)
            return IngestPipelineResult(
                success=False, error=str(exc), error_code="INTERNAL_ERROR", failed_phase=PHASE_UNKNOWN
            )

        logger.info("Ingest pipeline completed for task %s", task_id)
        return IngestPipelineResult(success=True, draft=ctx.draft)

    # Url / Query

    async def _run_ingest(self, ctx: PipelineContext) -> None:
        for phase in (
            self._fetch_phase,
            self._extract_phase,
            self._validate_phase,
            self._repair_phase,
            self._review_ready_phase,
            self._finalize_phase,
        ):
            ctx.cancel.raise_if_cancelled()
            await phase(ctx)

    def _report(self, phase: str, phase_progress: int, message: str, weights: Mapping[str, int] = URL_PHASE_WEIGHTS):
        self.progress.report(phase, calculate_progress(phase, phase_progress, weights), message)

    def _store(self, ctx: PipelineContext, phase: str, artifact_type: str, value: Any) -> None:
        try:
            if isinstance(value, str):
                ref = ctx.store.write_text(phase, artifact_type, value)
            else:
                ref = ctx.store.write_json(phase, artifact_type, value)
        except Exception as exc:
            logger.warning("Failed to store %s artifact for task %s: %s", artifact_type, ctx.task_id, exc)
            return
        ctx.artifacts = [a for a in ctx.artifacts if a.uri != ref.uri] + [ref]

    async def _fetch_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing Fetch phase for task %s", ctx.task_id)
        payload = ctx.payload
        if payload.mode == IngestMode.URL:
            if not payload.url or not payload.url.strip():
                raise IngestPipelineError("URL is required for URL mode", "MISSING_URL", PHASE_FETCH)
            self._report(PHASE_FETCH, 0, "Fetching URL content")
            result = await self.fetcher.fetch(payload.url.strip(), ctx.cancel)
            if not result.success:
                raise self._fetch_error(result)
            ctx.url = payload.url.strip()
        else:
            if not payload.query or not payload.query.strip():
                raise IngestPipelineError("Query is required for Query mode", "MISSING_QUERY", PHASE_FETCH)
            self._report(PHASE_FETCH, 0, "Searching for recipe candidates")
            result = await self._discover(ctx)

        ctx.fetch_result = result
        if result.final_url:
            ctx.url = result.final_url
        self._store(ctx, PHASE_FETCH, artifact_types.RAW_HTML, result.content or "")
        self._report(PHASE_FETCH, 100, "Fetch complete")

    def _fetch_error(self, result: FetchResult) -> IngestPipelineError:
        code = result.error_code or "FETCH_FAILED"
        if code in URL_VALIDATION_CODES:
            code = "INVALID_URL"
        return IngestPipelineError(result.error or "Fetch failed", code, PHASE_FETCH)

    async def _discover(self, ctx: PipelineContext) -> FetchResult:
        search = ctx.payload.search
        try:
            provider = self.search_resolver.resolve(search.provider_id if search else None)
        except SearchProviderNotFoundError as exc:
            raise IngestPipelineError(str(exc), "SEARCH_FAILED", PHASE_FETCH) from exc

        request = SearchRequest(
            query=ctx.payload.query.strip(),
            max_results=(search.max_results if search and search.max_results else provider.max_results),
            market=search.market if search else None,
            safe_search=search.safe_search if search else None,
        )
        search_result = await provider.search(request)
        if not search_result.success:
            raise IngestPipelineError(
                f"Search failed: {search_result.error} ({search_result.error_code})", "SEARCH_FAILED", PHASE_FETCH
            )
        if not search_result.candidates:
            raise IngestPipelineError(
                f"No search results for query: {request.query}", "NO_SEARCH_RESULTS", PHASE_FETCH
            )

        candidates = search_result.candidates[: self.max_discovery_candidates]
        last_failure: Optional[FetchResult] = None
        for idx, candidate in enumerate(candidates, start=1):
            ctx.cancel.raise_if_cancelled()
            self._report(
                PHASE_FETCH,
                int(100 * idx / (len(candidates) + 1)),
                f"Fetching candidate {idx}/{len(candidates)}: {candidate.url}",
            )
            result = await self.fetcher.fetch(candidate.url, ctx.cancel)
            if result.success:
                logger.info("Task %s selected search candidate %s", ctx.task_id, candidate.url)
                ctx.url = candidate.url
                return result
            logger.info("Candidate %s failed for task %s: %s", candidate.url, ctx.task_id, result.error_code)
            last_failure = result
        raise IngestPipelineError(
            f"None of {len(candidates)} search candidates could be fetched: {last_failure.error if last_failure else ''}",
            (last_failure.error_code if last_failure else None) or "FETCH_FAILED",
            PHASE_FETCH,
        )

    async def _extract_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing Extract phase for task %s", ctx.task_id)
        self._report(PHASE_EXTRACT, 0, "Sanitizing content")
        sanitized = sanitize(ctx.fetch_result.content or "")
        ctx.sanitized = sanitized
        self._store(ctx, PHASE_EXTRACT, artifact_types.SANITIZED_TEXT, sanitized.text_content)
        self._store(ctx, PHASE_EXTRACT, artifact_types.PAGE_META, sanitized.metadata)
        if sanitized.recipe_json_ld:
            self._store(ctx, PHASE_EXTRACT, artifact_types.JSON_LD, sanitized.recipe_json_ld)

        self._report(PHASE_EXTRACT, 20, "Extracting recipe data")
        context = ExtractionContext(
            url=ctx.url or "",
            metadata=sanitized.metadata,
            content_budget=self.content_budget,
            prompt_override=ctx.payload.prompt_overrides.get(EXTRACT_PHASE),
        )
        result = await self.orchestrator.extract(
            sanitized, context, ctx.cancel, retrieved_at=ctx.fetch_result.retrieved_at
        )
        ctx.extraction = result
        self._store(
            ctx,
            PHASE_EXTRACT,
            artifact_types.EXTRACTION,
            result.model_dump(mode="json", exclude={"recipe", "source", "raw_json_ld"}),
        )
        if not result.success or result.recipe is None:
            raise IngestPipelineError(
                result.error or "Recipe extraction failed",
                result.error_code or "LLM_EXTRACTION_FAILED",
                PHASE_EXTRACT,
            )
        ctx.draft = RecipeDraft(recipe=result.recipe, source=result.source)
        self._report(PHASE_EXTRACT, 100, f"Extraction complete ({result.method.value})")

    async def _validate_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing Validate phase for task %s", ctx.task_id)
        self._report(PHASE_VALIDATE, 0, "Validating recipe data")
        report = validate_recipe(ctx.draft.recipe)
        ctx.validation_report = report
        self._store(ctx, PHASE_VALIDATE, artifact_types.VALIDATION, report)

        if ctx.source_text.strip():
            self._report(PHASE_VALIDATE, 25, "Running similarity analysis")
            similarity = self.detector.analyze_sections(ctx.source_text, recipe_sections(ctx.draft.recipe), ctx.cancel)
            ctx.similarity_report = similarity
            self._store(ctx, PHASE_VALIDATE, artifact_types.SIMILARITY, similarity)
            logger.info(
                "Similarity for task %s: overlap=%d, similarity=%.4f, violates=%s",
                ctx.task_id,
                similarity.max_contiguous_token_overlap,
                similarity.max_ngram_similarity,
                similarity.violates_policy,
            )
        else:
            logger.debug("Skipping similarity check for task %s: no source text", ctx.task_id)
        self._report(
            PHASE_VALIDATE, 100, f"Validation complete: {len(report.errors)} errors, {len(report.warnings)} warnings"
        )

    async def _repair_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing RepairParaphrase phase for task %s", ctx.task_id)
        self._report(PHASE_REPAIR_PARAPHRASE, 0, "Checking if repair is needed")
        report = ctx.similarity_report
        if report is None or not report.violates_policy:
            self._report(PHASE_REPAIR_PARAPHRASE, 100, "No repair needed")
            return
        if not self.auto_repair:
            logger.info("Auto repair is disabled, skipping repair for task %s", ctx.task_id)
            self._report(PHASE_REPAIR_PARAPHRASE, 100, "AutoRepair disabled")
            return

        self._report(PHASE_REPAIR_PARAPHRASE, 30, "Calling LLM for paraphrasing")
        result = await self.repair_service.repair(
            ctx.draft, ctx.source_text, report, ctx.cancel, ctx.payload.prompt_overrides
        )
        ctx.repair_result = result
        new_report = result.new_similarity_report
        self._store(
            ctx,
            PHASE_REPAIR_PARAPHRASE,
            artifact_types.REPAIR,
            {
                "success": result.success,
                "stillViolatesPolicy": result.still_violates_policy,
                "error": result.error,
                "details": result.details,
                "newSimilarity": new_report.max_ngram_similarity if new_report else None,
                "newOverlap": new_report.max_contiguous_token_overlap if new_report else None,
                "llmResponseLength": len(result.raw_llm_response or ""),
            },
        )
        if result.success and result.repaired_draft is not None:
            ctx.draft = result.repaired_draft
            ctx.similarity_report = result.new_similarity_report
            logger.info("Repair successful for task %s", ctx.task_id)
        else:
            logger.warning(
                "Repair did not resolve similarity for task %s: %s", ctx.task_id, result.error or "still violates policy"
            )
        self._report(
            PHASE_REPAIR_PARAPHRASE,
            100,
            "Repair successful" if result.success else "Repair attempted but policy still violated",
        )

    def similarity_findings(self, report: Optional[SimilarityReport]) -> ValidationReport:
        findings = ValidationReport()
        if report is None:
            return findings
        level = self.detector.level(report)
        if level == SimilarityLevel.VIOLATION:
            findings.errors.append(
                f"[SIMILARITY_VIOLATION] Similarity: High verbatim similarity detected: "
                f"{report.max_ngram_similarity:.0%} n-gram similarity, "
                f"{report.max_contiguous_token_overlap} contiguous token overlap"
            )
        elif level == SimilarityLevel.WARNING:
            findings.warnings.append(
                f"[SIMILARITY_WARNING] Similarity: Moderate verbatim similarity detected: "
                f"{report.max_ngram_similarity:.0%} n-gram similarity, "
                f"{report.max_contiguous_token_overlap} contiguous token overlap"
            )
        return findings

    async def _review_ready_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing ReviewReady phase for task %s", ctx.task_id)
        self._report(PHASE_REVIEW_READY, 0, "Preparing draft for review")
        report = validate_recipe(ctx.draft.recipe)
        findings = self.similarity_findings(ctx.similarity_report)
        warnings = list(ctx.extraction.warnings if ctx.extraction else []) + report.warnings + findings.warnings
        final_report = ValidationReport(errors=report.errors + findings.errors, warnings=warnings)

        source = ctx.draft.source
        if ctx.url and source.url != ctx.url:
            source = source.model_copy(update={"url": ctx.url, "url_hash": hash_url(ctx.url)})
        ctx.draft = ctx.draft.model_copy(
            update={"source": source, "validation_report": final_report, "similarity_report": ctx.similarity_report}
        )
        self._store(ctx, PHASE_REVIEW_READY, artifact_types.RECIPE, ctx.draft.recipe.to_document())
        self._report(PHASE_REVIEW_READY, 100, "Draft ready for review")

    async def _finalize_phase(self, ctx: PipelineContext, weights: Mapping[str, int] = URL_PHASE_WEIGHTS) -> None:
        ctx.draft = ctx.draft.model_copy(update={"artifacts": list(ctx.artifacts)})
        self._report(PHASE_FINALIZE, 100, "Completed", weights)

    # Normalize

    async def _run_normalize(self, ctx: PipelineContext) -> None:
        await self._load_recipe_phase(ctx)
        ctx.cancel.raise_if_cancelled()
        await self._normalize_phase(ctx)
        ctx.cancel.raise_if_cancelled()
        await self._normalize_review_ready_phase(ctx)
        ctx.cancel.raise_if_cancelled()
        await self._finalize_phase(ctx, NORMALIZE_PHASE_WEIGHTS)

    async def _load_recipe_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing LoadRecipe phase for task %s", ctx.task_id)
        recipe_id = (ctx.payload.recipe_id or "").strip()
        if not recipe_id:
            raise IngestPipelineError("Recipe ID is required for Normalize mode", "MISSING_RECIPE_ID", PHASE_LOAD_RECIPE)
        self._report(PHASE_LOAD_RECIPE, 0, "Loading recipe", NORMALIZE_PHASE_WEIGHTS)
        loaded = self.recipe_loader(recipe_id) if self.recipe_loader else None
        if loaded is None:
            raise IngestPipelineError(f"Recipe not found: {recipe_id}", "RECIPE_NOT_FOUND", PHASE_LOAD_RECIPE)
        ctx.original_recipe = loaded.recipe
        ctx.original_source = loaded.source
        self._report(PHASE_LOAD_RECIPE, 100, f"Loaded recipe '{loaded.recipe.name}'", NORMALIZE_PHASE_WEIGHTS)

    async def _normalize_phase(self, ctx: PipelineContext) -> None:
        logger.info("Executing Normalize phase for task %s", ctx.task_id)
        self._report(PHASE_NORMALIZE, 0, "Generating normalize patches", NORMALIZE_PHASE_WEIGHTS)
        options = ctx.payload.normalize_options
        try:
            response = await self.normalize_service.generate_patches(
                ctx.original_recipe,
                options.focus_areas if options else None,
                ctx.cancel,
                ctx.payload.prompt_overrides,
            )
        except LlmClientError as exc:
            raise IngestPipelineError(f"Normalize generation failed: {exc}", "NORMALIZE_FAILED", PHASE_NORMALIZE) from exc

        self._report(PHASE_NORMALIZE, 60, f"Test-applying {len(response.patches)} patches", NORMALIZE_PHASE_WEIGHTS)
        errors = validate_patches(ctx.original_recipe, response.patches)
        for error in errors:
            logger.warning("Normalize patch validation for task %s: %s", ctx.task_id, error)
        result = apply_patches(ctx.original_recipe, response.patches)

        # Carry original values recorded during the test apply back onto the proposal
        originals = {(p.op, p.path): p.original_value for p in result.applied_patches}
        response = response.model_copy(
            update={
                "patches": [
                    p.model_copy(update={"original_value": originals.get((p.op, p.path), p.original_value)})
                    for p in response.patches
                ]
            }
        )
        ctx.normalize_response = response
        ctx.normalize_result = result
        self._store(
            ctx,
            PHASE_NORMALIZE,
            artifact_types.NORMALIZE_PATCH,
            {
                "response": response.model_dump(mode="json", by_alias=True),
                "validationErrors": errors,
                "testApply": result.model_dump(mode="json", by_alias=True, exclude={"normalized_recipe"}),
            },
        )
        self._store(ctx, PHASE_NORMALIZE, artifact_types.NORMALIZE_DIFF, render_patch_diff(ctx.original_recipe, response))
        self._report(PHASE_NORMALIZE, 100, result.summary or "Normalize complete", NORMALIZE_PHASE_WEIGHTS)

    async def _normalize_review_ready_phase(self, ctx: PipelineContext) -> None:
        self._report(PHASE_REVIEW_READY, 0, "Preparing normalize draft for review", NORMALIZE_PHASE_WEIGHTS)
        recipe = ctx.original_recipe
        source = ctx.original_source or RecipeSource(
            url="",
            url_hash="",
            retrieved_at=datetime.utcnow(),
            extraction_method=ExtractionMethod.MANUAL,
        )
        report = validate_recipe(recipe)
        result = ctx.normalize_result
        if result is not None and result.failed_patches:
            report.warnings.append(f"[PATCH_APPLY_FAILED] Patches: {len(result.failed_patches)} patch(es) failed to apply")
        if result is not None and result.error and result.normalized_recipe is None:
            report.warnings.append(f"[PATCH_APPLY_FAILED] Patches: {result.error}")
        ctx.draft = RecipeDraft(
            recipe=recipe,
            source=source,
            validation_report=report,
            normalize_patches=ctx.normalize_response,
            original_recipe=recipe,
        )
        self._report(PHASE_REVIEW_READY, 100, "Normalize draft ready for review", NORMALIZE_PHASE_WEIGHTS)
