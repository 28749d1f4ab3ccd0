from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from recipe_ingest.app.schemas.recipe import Recipe, RecipeSource


class IngestMode(str, Enum):
    URL = "Url"
    QUERY = "Query"
    NORMALIZE = "Normalize"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchSettings(_CamelModel):
    provider_id: Optional[str] = None
    max_results: Optional[int] = None
    market: Optional[str] = None
    safe_search: Optional[str] = None


class NormalizeOptions(_CamelModel):
    focus_areas: List[str] = Field(default_factory=list)


class IngestPayload(_CamelModel):
    mode: IngestMode
    url: Optional[str] = None
    query: Optional[str] = None
    search: Optional[SearchSettings] = None
    recipe_id: Optional[str] = None
    normalize_options: Optional[NormalizeOptions] = None
    prompt_overrides: Dict[str, str] = Field(default_factory=dict)

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_case_insensitive(cls, value: Any) -> Any:
        if isinstance(value, str):
            for mode in IngestMode:
                if mode.value.lower() == value.strip().lower():
                    return mode
        return value


class ArtifactRef(_CamelModel):
    type: str
    uri: str


class ValidationReport(_CamelModel):
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class SimilarityReport(_CamelModel):
    max_contiguous_token_overlap: int = 0
    max_ngram_similarity: float = 0.0
    violates_policy: bool = False
    details: Optional[str] = None


class PatchOp(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class RiskCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


RISK_ORDER = {RiskCategory.LOW: 0, RiskCategory.MEDIUM: 1, RiskCategory.HIGH: 2}


class NormalizePatchOperation(_CamelModel):
    op: PatchOp
    path: str
    value: Any = None
    risk_category: RiskCategory = RiskCategory.MEDIUM
    reason: str = ""
    original_value: Any = None

    @field_validator("op", "risk_category", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class NormalizePatchError(_CamelModel):
    patch: NormalizePatchOperation
    error: str


class NormalizePatchResponse(_CamelModel):
    patches: List[NormalizePatchOperation] = Field(default_factory=list)
    summary: str = ""
    has_high_risk_changes: bool = False

    @property
    def low_risk_count(self) -> int:
        return sum(1 for p in self.patches if p.risk_category == RiskCategory.LOW)

    @property
    def medium_risk_count(self) -> int:
        return sum(1 for p in self.patches if p.risk_category == RiskCategory.MEDIUM)

    @property
    def high_risk_count(self) -> int:
        return sum(1 for p in self.patches if p.risk_category == RiskCategory.HIGH)


class NormalizePatchResult(_CamelModel):
    success: bool
    normalized_recipe: Optional[Recipe] = None
    applied_patches: List[NormalizePatchOperation] = Field(default_factory=list)
    failed_patches: List[NormalizePatchError] = Field(default_factory=list)
    summary: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_partial(self) -> bool:
        return not self.success and self.normalized_recipe is not None and bool(self.failed_patches)

    @classmethod
    def succeeded(cls, recipe: Recipe, applied: List[NormalizePatchOperation], summary: str) -> "NormalizePatchResult":
        return cls(success=True, normalized_recipe=recipe, applied_patches=applied, summary=summary)

    @classmethod
    def partial(
        cls,
        recipe: Recipe,
        applied: List[NormalizePatchOperation],
        failed: List[NormalizePatchError],
        summary: str,
    ) -> "NormalizePatchResult":
        return cls(
            success=False,
            normalized_recipe=recipe,
            applied_patches=applied,
            failed_patches=failed,
            summary=summary,
            error=f"{len(failed)} patch(es) failed to apply",
        )

    @classmethod
    def failed(cls, error: str) -> "NormalizePatchResult":
        return cls(success=False, error=error)


class RecipeDraft(_CamelModel):
    recipe: Recipe
    source: RecipeSource
    validation_report: ValidationReport = Field(default_factory=ValidationReport)
    similarity_report: Optional[SimilarityReport] = None
    artifacts: List[ArtifactRef] = Field(default_factory=list)
    normalize_patches: Optional[NormalizePatchResponse] = None
    original_recipe: Optional[Recipe] = None


class IngestTaskCreate(_CamelModel):
    thread_id: Optional[str] = None
    payload: IngestPayload


class IngestTaskRead(BaseModel):
    task_id: str = Field(validation_alias="id")
    thread_id: str
    mode: str
    status: str
    current_phase: Optional[str] = None
    progress: int = 0
    status_message: Optional[str] = None
    result: Optional[dict] = Field(default=None, validation_alias="result_json")
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    failed_phase: Optional[str] = None
    committable: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ApplyPatchRequest(_CamelModel):
    patch_indices: Optional[List[int]] = None
    max_risk_level: Optional[RiskCategory] = None


class RejectRequest(_CamelModel):
    reason: Optional[str] = None


class TaskActionResponse(_CamelModel):
    task_id: str
    status: str
    message: Optional[str] = None


class ProgressEvent(_CamelModel):
    task_id: str
    phase: str
    progress: int
    message: str
    timestamp: datetime


class TaskState(_CamelModel):
    task_id: str
    status: str
    current_phase: Optional[str] = None
    progress: int = 0
    last_updated: datetime
    result: Optional[str] = None
