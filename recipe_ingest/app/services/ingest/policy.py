from typing import Optional

from recipe_ingest.app.schemas.ingest import RecipeDraft
from recipe_ingest.app.services.ingest.similarity import GuardrailThresholds, SimilarityLevel


def is_committable(
    draft: RecipeDraft,
    block_on_warning: bool = False,
    thresholds: Optional[GuardrailThresholds] = None,
) -> bool:
    """A draft can be committed when it has no validation errors and no violating similarity.

    With ``block_on_warning`` a warning-level similarity also blocks the commit.
    """
    if draft.validation_report.errors:
        return False
    report = draft.similarity_report
    if report is None:
        return True
    if report.violates_policy:
        return False
    if block_on_warning:
        thresholds = thresholds or GuardrailThresholds.from_settings()
        level = thresholds.level(report.max_contiguous_token_overlap, report.max_ngram_similarity)
        return level == SimilarityLevel.OK
    return True
