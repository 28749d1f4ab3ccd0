"""Recipe extractors for the ingest pipeline."""

from recipe_ingest.app.services.ingest.extractors.json_ld import JSON_LD_CONFIDENCE, extract_from_json_ld
from recipe_ingest.app.services.ingest.extractors.llm import LlmRecipeExtractor

__all__ = [
    "JSON_LD_CONFIDENCE",
    "LlmRecipeExtractor",
    "extract_from_json_ld",
]
