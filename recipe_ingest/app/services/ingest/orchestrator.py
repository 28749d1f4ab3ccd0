"""Extraction orchestration: JSON-LD first, LLM fallback."""

import logging
from datetime import datetime
from typing import Optional

from recipe_ingest.app.schemas.recipe import RecipeSource
from recipe_ingest.app.services.ingest.cancellation import CancellationToken
from recipe_ingest.app.services.ingest.extractors import LlmRecipeExtractor, extract_from_json_ld
from recipe_ingest.app.services.ingest.models import ExtractionContext, ExtractionResult
from recipe_ingest.app.services.ingest.sanitizer import SanitizedContent
from recipe_ingest.app.services.ingest.url_utils import hash_url, site_name_from_url

logger = logging.getLogger(__name__)


def build_source(
    context: ExtractionContext, result: ExtractionResult, retrieved_at: Optional[datetime] = None
) -> RecipeSource:
    metadata = context.metadata
    return RecipeSource(
        url=context.url,
        url_hash=hash_url(context.url),
        site_name=metadata.site_name or site_name_from_url(context.url),
        author=metadata.author,
        retrieved_at=retrieved_at or datetime.utcnow(),
        extraction_method=result.method,
    )


class ExtractionOrchestrator:
    def __init__(self, llm_extractor: Optional[LlmRecipeExtractor] = None):
        self.llm_extractor = llm_extractor or LlmRecipeExtractor()

    async def extract(
        self,
        sanitized: SanitizedContent,
        context: ExtractionContext,
        cancel: Optional[CancellationToken] = None,
        retrieved_at: Optional[datetime] = None,
    ) -> ExtractionResult:
        warnings = []
        if sanitized.recipe_json_ld:
            result = extract_from_json_ld(sanitized.recipe_json_ld)
            if result.success:
                logger.info("Recipe extracted from JSON-LD for %s", context.url)
                result.source = build_source(context, result, retrieved_at)
                return result
            logger.info("JSON-LD extraction failed for %s (%s); falling back to LLM", context.url, result.error_code)
            warnings.append(f"JSON-LD extraction failed: {result.error}")

        result = await self.llm_extractor.extract(sanitized.text_content, context, cancel)
        result.warnings = warnings + result.warnings
        if result.success:
            result.source = build_source(context, result, retrieved_at)
        return result
