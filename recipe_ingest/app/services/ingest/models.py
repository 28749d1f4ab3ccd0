"""Pydantic models shared by the ingest extractors and the orchestrator."""

from typing import List, Optional

from pydantic import BaseModel, Field

from recipe_ingest.app.schemas.recipe import ExtractionMethod, Recipe, RecipeSource
from recipe_ingest.app.services.ingest.sanitizer import PageMetadata


class ExtractionContext(BaseModel):
    """What an extractor knows about the page besides its content."""

    url: str
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    content_budget: int = 60000
    prompt_override: Optional[str] = None


class ExtractionResult(BaseModel):
    """Result of a recipe extraction attempt."""

    success: bool
    recipe: Optional[Recipe] = None
    source: Optional[RecipeSource] = None
    method: Optional[ExtractionMethod] = None
    confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    raw_json_ld: Optional[str] = None
    repair_attempts: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def failed(cls, error: str, error_code: str, **kwargs) -> "ExtractionResult":
        return cls(success=False, error=error, error_code=error_code, **kwargs)
