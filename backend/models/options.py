"""Per-call option models for chunking and retrieval."""
from dataclasses import dataclass
from enum import Enum

from errors import ConfigurationError
from config import (
    CHUNK_MAX_TOKENS,
    CHUNK_MIN_TOKENS,
    CHUNK_OVERLAP,
    DEFAULT_TOP_K,
    SIMILARITY_THRESHOLD,
)


class RetrievalStrategy(str, Enum):
    VECTOR_ONLY = "vector_only"
    KEYWORD_ONLY = "keyword_only"
    HYBRID = "hybrid"


@dataclass
class ChunkingOptions:
    """Size limits for one chunking pass, in tokens."""
    max_tokens: int = CHUNK_MAX_TOKENS
    min_tokens: int = CHUNK_MIN_TOKENS
    overlap_tokens: int = CHUNK_OVERLAP
    preserve_structure: bool = True

    def validate(self) -> None:
        """
        Check the limits are usable before any text is processed.

        Raises:
            ConfigurationError: If the limits are inconsistent
        """
        if self.min_tokens <= 0:
            raise ConfigurationError(f"min_tokens must be positive, got {self.min_tokens}")
        if self.max_tokens <= self.min_tokens:
            raise ConfigurationError(
                f"max_tokens ({self.max_tokens}) must exceed min_tokens ({self.min_tokens})"
            )
        # Pieces are capped at max - min tokens. The word estimate prices one word at two
        # tokens; under tiktoken a single long word can cost more and becomes its own piece
        if self.max_tokens - self.min_tokens < 2:
            raise ConfigurationError(
                "max_tokens must exceed min_tokens by at least 2 to fit a single word"
            )
        if not 0 <= self.overlap_tokens < self.max_tokens:
            raise ConfigurationError(
                f"overlap_tokens must be in [0, max_tokens), got {self.overlap_tokens}"
            )


@dataclass
class RetrievalOptions:
    """Per-query retrieval options."""
    top_k: int = DEFAULT_TOP_K
    similarity_threshold: float = SIMILARITY_THRESHOLD
    strategy: RetrievalStrategy = RetrievalStrategy.HYBRID
    enable_reranking: bool = True
    min_quality_score: float = 0.0

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If any option is out of range
        """
        if self.top_k <= 0:
            raise ConfigurationError(f"top_k must be positive, got {self.top_k}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"similarity_threshold must be in [0, 1], got {self.similarity_threshold}"
            )
        if not 0.0 <= self.min_quality_score <= 1.0:
            raise ConfigurationError(
                f"min_quality_score must be in [0, 1], got {self.min_quality_score}"
            )
        try:
            self.strategy = RetrievalStrategy(self.strategy)
        except ValueError:
            raise ConfigurationError(f"Unknown retrieval strategy: {self.strategy}")
