"""Chunk data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional
import numpy as np


class Granularity(str, Enum):
    """Chunk scales, ordered coarse to fine."""
    DOCUMENT = "document"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"


GRANULARITY_ORDER = [
    Granularity.DOCUMENT,
    Granularity.SECTION,
    Granularity.PARAGRAPH,
    Granularity.SENTENCE,
]


class MatchSource(str, Enum):
    """Which retrieval source(s) surfaced a chunk."""
    VECTOR = "vector"
    KEYWORD = "keyword"
    BOTH = "both"


def make_chunk_id(document_id: str, version: int, granularity: Granularity, ordinal: int) -> str:
    """Format: "{document_id}_v{version}_{granularity}_{ordinal}"."""
    return f"{document_id}_v{version}_{Granularity(granularity).value}_{ordinal}"


@dataclass
class Chunk:
    """Represents a document chunk for retrieval.

    Links to related chunks are stored as ids and are set once at chunking
    time.
    """
    chunk_id: str
    document_id: str
    version: int
    ordinal: int
    granularity: Granularity
    content: str
    token_count: int = 0
    char_count: int = 0
    word_count: int = 0
    heading: Optional[str] = None
    quality_score: float = 0.0
    content_type: str = "text"
    embedding: Optional[np.ndarray] = None
    parent_id: Optional[str] = None
    previous_id: Optional[str] = None
    next_id: Optional[str] = None
    start_offset: int = 0
    end_offset: int = 0
    overlap_word_count: int = 0

    def to_record(self) -> Dict:
        """Flatten to the row shape stored by the indexes (embedding excluded)."""
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "version": self.version,
            "ordinal": self.ordinal,
            "granularity": Granularity(self.granularity).value,
            "content": self.content,
            "token_count": self.token_count,
            "char_count": self.char_count,
            "word_count": self.word_count,
            "heading": self.heading,
            "quality_score": self.quality_score,
            "content_type": self.content_type,
            "parent_id": self.parent_id,
            "previous_id": self.previous_id,
            "next_id": self.next_id,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "overlap_word_count": self.overlap_word_count,
        }

    @classmethod
    def from_record(cls, row: Dict) -> "Chunk":
        """Rebuild a chunk from a stored row; unknown columns are ignored."""
        embedding = row.get("embedding")
        return cls(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            version=row.get("version", 1),
            ordinal=row["ordinal"],
            granularity=Granularity(row.get("granularity", Granularity.PARAGRAPH.value)),
            content=row["content"],
            token_count=row.get("token_count", 0),
            char_count=row.get("char_count", 0),
            word_count=row.get("word_count", 0),
            heading=row.get("heading"),
            quality_score=row.get("quality_score", 0.0),
            content_type=row.get("content_type", "text"),
            embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else None,
            parent_id=row.get("parent_id"),
            previous_id=row.get("previous_id"),
            next_id=row.get("next_id"),
            start_offset=row.get("start_offset", 0),
            end_offset=row.get("end_offset", 0),
            overlap_word_count=row.get("overlap_word_count", 0),
        )


@dataclass
class RetrievalResult:
    """Chunk with fused relevance scores from hybrid retrieval."""
    chunk: Chunk
    similarity_score: float  # 0.0 to 1.0, 0.0 when vector search did not match
    rank_score: float  # normalized keyword rank, 0.0 when keyword search did not match
    combined_score: float  # 0.0 to 1.0
    match_source: MatchSource


@dataclass
class ChunkForest:
    """Arena of chunks keyed by id; parent and sibling links are ids into it."""
    chunks: Dict[str, Chunk] = field(default_factory=dict)

    def add(self, chunk: Chunk) -> None:
        if chunk.chunk_id in self.chunks:
            raise ValueError(f"Duplicate chunk id: {chunk.chunk_id}")
        self.chunks[chunk.chunk_id] = chunk

    def get(self, chunk_id: Optional[str]) -> Optional[Chunk]:
        if chunk_id is None:
            return None
        return self.chunks.get(chunk_id)

    def __len__(self) -> int:
        return len(self.chunks)

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks.values())

    def at(self, granularity: Granularity) -> List[Chunk]:
        """Chunks of one granularity in ordinal order."""
        level = [c for c in self.chunks.values() if c.granularity == granularity]
        return sorted(level, key=lambda c: c.ordinal)

    def roots(self) -> List[Chunk]:
        return [c for c in self.chunks.values() if c.parent_id is None]

    def children(self, chunk_id: str) -> List[Chunk]:
        kids = [c for c in self.chunks.values() if c.parent_id == chunk_id]
        return sorted(kids, key=lambda c: c.ordinal)

    def ancestors(self, chunk_id: str) -> List[Chunk]:
        """Enclosing chunks from the immediate parent up to the root."""
        result = []
        current = self.get(chunk_id)
        while current is not None and current.parent_id is not None:
            current = self.get(current.parent_id)
            if current is None:
                break
            result.append(current)
        return result
