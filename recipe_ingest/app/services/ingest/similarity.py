"""Verbatim-copy guardrail: contiguous token overlap and n-gram Jaccard similarity."""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from recipe_ingest.app.core.config import get_settings
from recipe_ingest.app.schemas.ingest import SimilarityReport
from recipe_ingest.app.schemas.recipe import Recipe
from recipe_ingest.app.services.ingest.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+")


class SimilarityLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    VIOLATION = "violation"


@dataclass(frozen=True)
class GuardrailThresholds:
    overlap_warning: int = 40
    overlap_error: int = 80
    similarity_warning: float = 0.20
    similarity_error: float = 0.35
    ngram_size: int = 5
    min_token_length: int = 2

    @classmethod
    def from_settings(cls) -> "GuardrailThresholds":
        settings = get_settings()
        return cls(
            overlap_warning=settings.guardrail_token_overlap_warning_threshold,
            overlap_error=settings.guardrail_token_overlap_error_threshold,
            similarity_warning=settings.guardrail_ngram_similarity_warning_threshold,
            similarity_error=settings.guardrail_ngram_similarity_error_threshold,
            ngram_size=settings.guardrail_ngram_size,
            min_token_length=settings.guardrail_min_token_length,
        )

    def level(self, overlap: int, similarity: float) -> SimilarityLevel:
        if overlap >= self.overlap_error or similarity >= self.similarity_error:
            return SimilarityLevel.VIOLATION
        if overlap >= self.overlap_warning or similarity >= self.similarity_warning:
            return SimilarityLevel.WARNING
        return SimilarityLevel.OK


def tokenize(text: Optional[str], min_token_length: int = 2) -> List[str]:
    if not text or not text.strip():
        return []
    return [t for t in _WORD_RE.findall(text.lower()) if len(t) >= min_token_length]


def max_contiguous_overlap(source_tokens: Sequence[str], extracted_tokens: Sequence[str]) -> int:
    """Length of the longest run of tokens that appears in both sequences in order."""
    if not source_tokens or not extracted_tokens:
        return 0
    positions: Dict[str, List[int]] = defaultdict(list)
    for idx, token in enumerate(source_tokens):
        positions[token].append(idx)

    best = 0
    n_src, n_ext = len(source_tokens), len(extracted_tokens)
    for start in range(n_ext):
        for src_start in positions.get(extracted_tokens[start], ()):
            length = 0
            while (
                start + length < n_ext
                and src_start + length < n_src
                and extracted_tokens[start + length] == source_tokens[src_start + length]
            ):
                length += 1
            if length > best:
                best = length
    return best


def _ngrams(tokens: Sequence[str], n: int) -> Set[Tuple[str, ...]]:
    return {tuple(tokens[i : i + n]) for i in range(len(tokens) - n + 1)}


def ngram_jaccard_similarity(source_tokens: Sequence[str], extracted_tokens: Sequence[str], n: int = 5) -> float:
    if len(source_tokens) < n or len(extracted_tokens) < n:
        return 0.0
    source_ngrams = _ngrams(source_tokens, n)
    extracted_ngrams = _ngrams(extracted_tokens, n)
    union = source_ngrams | extracted_ngrams
    if not union:
        return 0.0
    return len(source_ngrams & extracted_ngrams) / len(union)


def recipe_sections(recipe: Recipe) -> Dict[str, str]:
    """The free-text parts of a recipe that can carry copied prose."""
    sections: Dict[str, str] = {}
    if recipe.description and recipe.description.strip():
        sections["Description"] = recipe.description
    if recipe.instructions:
        sections["Instructions"] = " ".join(recipe.instructions)
    return sections


class SimilarityDetector:
    def __init__(self, thresholds: Optional[GuardrailThresholds] = None):
        self.thresholds = thresholds or GuardrailThresholds.from_settings()

    def tokenize(self, text: Optional[str]) -> List[str]:
        return tokenize(text, self.thresholds.min_token_length)

    def score(self, source_tokens: Sequence[str], text: str) -> Tuple[int, float]:
        tokens = self.tokenize(text)
        return (
            max_contiguous_overlap(source_tokens, tokens),
            ngram_jaccard_similarity(source_tokens, tokens, self.thresholds.ngram_size),
        )

    def level(self, report: SimilarityReport) -> SimilarityLevel:
        return self.thresholds.level(report.max_contiguous_token_overlap, report.max_ngram_similarity)

    def analyze(self, source_content: str, extracted_text: str) -> SimilarityReport:
        if not (source_content or "").strip() or not (extracted_text or "").strip():
            return SimilarityReport(details="Empty content provided for similarity analysis.")
        overlap, similarity = self.score(self.tokenize(source_content), extracted_text)
        violates = self.thresholds.level(overlap, similarity) == SimilarityLevel.VIOLATION
        status = "VIOLATION" if violates else "OK"
        return SimilarityReport(
            max_contiguous_token_overlap=overlap,
            max_ngram_similarity=similarity,
            violates_policy=violates,
            details=(
                f"Status: {status}. Max contiguous overlap: {overlap} tokens "
                f"(threshold: {self.thresholds.overlap_error}). Max n-gram similarity: {similarity:.2%} "
                f"(threshold: {self.thresholds.similarity_error:.2%})."
            ),
        )

    def analyze_sections(
        self,
        source_content: str,
        sections: Mapping[str, str],
        cancel: Optional[CancellationToken] = None,
    ) -> SimilarityReport:
        if not (source_content or "").strip() or not sections:
            return SimilarityReport(details="No sections provided for similarity analysis.")

        source_tokens = self.tokenize(source_content)
        max_overlap = 0
        max_similarity = 0.0
        flagged: List[str] = []
        for name, text in sections.items():
            if not text or not text.strip():
                continue
            if cancel is not None:
                cancel.raise_if_cancelled()
            overlap, similarity = self.score(source_tokens, text)
            max_overlap = max(max_overlap, overlap)
            max_similarity = max(max_similarity, similarity)
            if self.thresholds.level(overlap, similarity) != SimilarityLevel.OK:
                flagged.append(f"{name}: overlap={overlap}, similarity={similarity:.2%}")
            logger.debug("Section '%s': overlap=%d, similarity=%.4f", name, overlap, similarity)

        violates = self.thresholds.level(max_overlap, max_similarity) == SimilarityLevel.VIOLATION
        details = (
            f"Status: {'VIOLATION' if violates else 'OK'}. Max contiguous overlap: {max_overlap} tokens. "
            f"Max n-gram similarity: {max_similarity:.2%}."
        )
        if flagged:
            details += " High similarity sections: " + "; ".join(flagged)
        return SimilarityReport(
            max_contiguous_token_overlap=max_overlap,
            max_ngram_similarity=max_similarity,
            violates_policy=violates,
            details=details,
        )
