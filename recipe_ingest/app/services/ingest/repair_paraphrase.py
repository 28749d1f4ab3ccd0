"""LLM rewrite of the recipe sections that are too close to the source text."""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from recipe_ingest.app.schemas.ingest import RecipeDraft, SimilarityReport
from recipe_ingest.app.services.ingest.cancellation import CancellationToken, IngestCancelledError
from recipe_ingest.app.services.ingest.prompts import REPAIR_PARAPHRASE_PHASE, get_prompt, render_prompt
from recipe_ingest.app.services.ingest.similarity import SimilarityDetector, SimilarityLevel, recipe_sections
from recipe_ingest.app.services.llm_client import LlmClient, LlmClientError, extract_json_object, get_llm_client

logger = logging.getLogger(__name__)

MAX_SOURCE_EXCERPT_LENGTH = 2000


class RepairParaphraseResult(BaseModel):
    success: bool
    repaired_draft: Optional[RecipeDraft] = None
    new_similarity_report: Optional[SimilarityReport] = None
    still_violates_policy: bool = True
    raw_llm_response: Optional[str] = None
    details: Optional[str] = None
    error: Optional[str] = None


def split_into_steps(text: str) -> List[str]:
    lines = [re.sub(r"^\d+[.)]\s*", "", line.strip()) for line in re.split(r"[\r\n]+", text)]
    lines = [line for line in lines if line]
    if len(lines) > 1:
        return lines
    sentences = [s.strip() + "." for s in text.split(".") if s.strip()]
    return [s for s in sentences if len(s) > 5]


def parse_rephrased_sections(raw: str) -> Dict[str, str]:
    """Map section name (lowercased) to rephrased text. Empty when nothing usable is found."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start < 0 or end <= start:
        logger.warning("Could not find JSON in repair response")
        return {}
    try:
        data = extract_json_object(raw[start : end + 1])
    except ValueError as exc:
        logger.warning("Failed to parse repair response: %s", exc)
        return {}
    if not isinstance(data, dict):
        return {}
    sections: Dict[str, str] = {}
    for item in data.get("sections") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or ""
        text = item.get("rephrased_text") or item.get("rephrasedText") or ""
        if isinstance(name, str) and isinstance(text, str) and text.strip():
            sections[name.strip().lower()] = text.strip()
    return sections


class RepairParaphraseService:
    def __init__(self, detector: Optional[SimilarityDetector] = None, client: Optional[LlmClient] = None):
        self.detector = detector or SimilarityDetector()
        self._client = client

    @property
    def client(self) -> LlmClient:
        return self._client or get_llm_client()

    def sections_to_repair(self, draft: RecipeDraft, source_text: str) -> List[Dict[str, Any]]:
        source_tokens = self.detector.tokenize(source_text)
        offending = []
        for name, text in recipe_sections(draft.recipe).items():
            overlap, similarity = self.detector.score(source_tokens, text)
            if self.detector.thresholds.level(overlap, similarity) != SimilarityLevel.OK:
                offending.append(
                    {
                        "name": name,
                        "original_text": text,
                        "similarity_score": round(similarity, 4),
                        "token_overlap": overlap,
                    }
                )
        return offending

    async def repair(
        self,
        draft: RecipeDraft,
        source_text: str,
        report: SimilarityReport,
        cancel: Optional[CancellationToken] = None,
        prompt_overrides: Optional[Dict[str, str]] = None,
    ) -> RepairParaphraseResult:
        cancel = cancel or CancellationToken()
        logger.info(
            "Starting repair paraphrase: overlap=%d, similarity=%.4f",
            report.max_contiguous_token_overlap,
            report.max_ngram_similarity,
        )
        try:
            sections = self.sections_to_repair(draft, source_text)
            if not sections:
                return RepairParaphraseResult(
                    success=not report.violates_policy,
                    repaired_draft=draft,
                    new_similarity_report=report,
                    still_violates_policy=report.violates_policy,
                    details="No sections required repair.",
                )

            excerpt = source_text
            if len(excerpt) > MAX_SOURCE_EXCERPT_LENGTH:
                excerpt = excerpt[:MAX_SOURCE_EXCERPT_LENGTH] + "..."
            prompt = render_prompt(
                get_prompt(REPAIR_PARAPHRASE_PHASE, prompt_overrides),
                {"source_excerpt": excerpt, "sections": sections},
            )
            cancel.raise_if_cancelled()
            raw = await cancel.run(
                self.client.complete(
                    [{"role": "user", "content": prompt.user_prompt}],
                    system_prompt=prompt.system_prompt,
                    temperature=0.7,
                    max_tokens=2000,
                )
            )

            rephrased = parse_rephrased_sections(raw)
            if not rephrased:
                return RepairParaphraseResult(
                    success=False,
                    raw_llm_response=raw,
                    error="Could not parse rephrased sections from LLM response.",
                )

            updates: Dict[str, Any] = {}
            if "description" in rephrased:
                updates["description"] = rephrased["description"]
            if "instructions" in rephrased:
                steps = split_into_steps(rephrased["instructions"])
                if steps:
                    updates["instructions"] = steps
            recipe = draft.recipe.model_copy(update=updates)

            new_report = self.detector.analyze_sections(source_text, recipe_sections(recipe), cancel)
            repaired = draft.model_copy(update={"recipe": recipe, "similarity_report": new_report})
            still_violates = new_report.violates_policy
            logger.info(
                "Repair complete: overlap=%d, similarity=%.4f, still violates=%s",
                new_report.max_contiguous_token_overlap,
                new_report.max_ngram_similarity,
                still_violates,
            )
            return RepairParaphraseResult(
                success=not still_violates,
                repaired_draft=repaired,
                new_similarity_report=new_report,
                still_violates_policy=still_violates,
                raw_llm_response=raw,
                details=(
                    f"Repaired {len(rephrased)} section(s). New similarity: {new_report.max_ngram_similarity:.2%}, "
                    f"overlap: {new_report.max_contiguous_token_overlap} tokens."
                ),
            )
        except IngestCancelledError:
            raise
        except LlmClientError as exc:
            logger.error("LLM call failed for repair paraphrase: %s", exc)
            return RepairParaphraseResult(success=False, error="LLM did not return a valid response.")
        except Exception as exc:
            logger.exception("Repair paraphrase failed")
            return RepairParaphraseResult(success=False, error=str(exc))
