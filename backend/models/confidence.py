"""Confidence data models."""
from dataclasses import dataclass


@dataclass
class ConfidenceRecord:
    """Confidence in a retrieval result set, with the signals behind it."""
    confidence: float  # 0.0 to 1.0
    top_score: float
    score_spread: float
    source_agreement: float  # fraction of results found by both sources
    result_count: int = 0
    level: str = "poor"  # excellent | good | acceptable | uncertain | poor
    recommendation: str = "decline"  # answer | hedge | decline
