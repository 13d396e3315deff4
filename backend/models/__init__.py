"""Data models for the DocQA retrieval engine."""
from .document import Document
from .chunk import (
    Chunk,
    ChunkForest,
    Granularity,
    GRANULARITY_ORDER,
    MatchSource,
    RetrievalResult,
    make_chunk_id,
)
from .options import ChunkingOptions, RetrievalOptions, RetrievalStrategy
from .confidence import ConfidenceRecord

__all__ = [
    "Document",
    "Chunk",
    "ChunkForest",
    "Granularity",
    "GRANULARITY_ORDER",
    "MatchSource",
    "RetrievalResult",
    "make_chunk_id",
    "ChunkingOptions",
    "RetrievalOptions",
    "RetrievalStrategy",
    "ConfidenceRecord",
]
