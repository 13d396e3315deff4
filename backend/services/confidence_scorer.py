"""Confidence scoring for retrieval result sets."""
import logging
from dataclasses import dataclass
from typing import List, Optional

from models.chunk import MatchSource, RetrievalResult
from models.confidence import ConfidenceRecord
from config import (
    CONFIDENCE_FLOOR,
    CONFIDENCE_TOP_WEIGHT,
    CONFIDENCE_SPREAD_WEIGHT,
    CONFIDENCE_AGREEMENT_WEIGHT,
    SPREAD_SATURATION,
    ANSWER_THRESHOLD,
    HEDGE_THRESHOLD,
)

logger = logging.getLogger(__name__)

# (minimum confidence, level), checked in order
CONFIDENCE_LEVELS = [
    (0.9, "excellent"),
    (0.75, "good"),
    (0.6, "acceptable"),
    (0.4, "uncertain"),
]


@dataclass
class ConfidenceSettings:
    floor: float = CONFIDENCE_FLOOR
    top_weight: float = CONFIDENCE_TOP_WEIGHT
    spread_weight: float = CONFIDENCE_SPREAD_WEIGHT
    agreement_weight: float = CONFIDENCE_AGREEMENT_WEIGHT
    spread_saturation: float = SPREAD_SATURATION
    answer_threshold: float = ANSWER_THRESHOLD
    hedge_threshold: float = HEDGE_THRESHOLD


def confidence_level(confidence: float) -> str:
    for minimum, level in CONFIDENCE_LEVELS:
        if confidence >= minimum:
            return level
    return "poor"


class ConfidenceScorer:
    """Turn a ranked result set into a single confidence value for answer generation."""

    def __init__(self, settings: Optional[ConfidenceSettings] = None):
        self.settings = settings or ConfidenceSettings()

    def score(self, results: List[RetrievalResult], top_k: Optional[int] = None) -> ConfidenceRecord:
        """
        Score how much a caller should trust a result set.

        Signals:
        - top score: best combined score
        - spread: top score minus the score at rank top_k (or the last result),
          saturating at spread_saturation
        - source agreement: fraction of results found by both vector and keyword search

        The weighted sum is clamped to [0, 1] and never exceeds the top score.
        An empty result set gets the confidence floor.

        Args:
            results: Ranked retrieval results
            top_k: Rank used for the spread (default: number of results)

        Returns:
            ConfidenceRecord with the breakdown, level and recommendation
        """
        s = self.settings

        if not results:
            return self._record(s.floor, 0.0, 0.0, 0.0, 0)

        scores = sorted((r.combined_score for r in results), reverse=True)
        top_score = scores[0]
        rank = min(top_k or len(scores), len(scores))
        spread = max(0.0, top_score - scores[rank - 1])
        spread_signal = min(spread / s.spread_saturation, 1.0) if s.spread_saturation > 0 else 0.0
        agreement = sum(1 for r in results if r.match_source == MatchSource.BOTH) / len(results)

        confidence = (
            s.top_weight * top_score
            + s.spread_weight * spread_signal
            + s.agreement_weight * agreement
        )
        confidence = min(max(0.0, min(1.0, confidence)), top_score)

        logger.debug(
            f"Confidence {confidence:.3f} (top: {top_score:.3f}, spread: {spread:.3f}, "
            f"agreement: {agreement:.2f}, results: {len(results)})"
        )
        return self._record(confidence, top_score, spread, agreement, len(results))

    def _record(
        self,
        confidence: float,
        top_score: float,
        spread: float,
        agreement: float,
        count: int
    ) -> ConfidenceRecord:
        if confidence >= self.settings.answer_threshold:
            recommendation = "answer"
        elif confidence >= self.settings.hedge_threshold:
            recommendation = "hedge"
        else:
            recommendation = "decline"

        return ConfidenceRecord(
            confidence=confidence,
            top_score=top_score,
            score_spread=spread,
            source_agreement=agreement,
            result_count=count,
            level=confidence_level(confidence),
            recommendation=recommendation,
        )
