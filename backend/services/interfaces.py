"""
Contracts for the external collaborators of the retrieval engine.

The engine and the ingestion pipeline depend only on these protocols, so the
Supabase-backed services and the in-memory indexes are interchangeable.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from models.chunk import Chunk


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Contract for embedding generation.

    Implementations:
    - EmbeddingModel (Hugging Face Inference API)
    """

    max_input_chars: int

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        ...

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        ...


@runtime_checkable
class VectorIndex(Protocol):
    """
    Contract for vector similarity search.

    Implementations:
    - VectorStore (Supabase pgvector)
    - InMemoryVectorIndex (testing/development)
    """

    distance_metric: str
    dimension: int

    def upsert(self, chunk_id: str, vector: Optional[Sequence[float]], metadata: Dict[str, Any]) -> None:
        """Store or replace one chunk record; `vector` may be None when embedding failed."""
        ...

    def query(
        self,
        vector: Sequence[float],
        k: int,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[Tuple[str, float]]:
        """Return up to k (chunk_id, distance) pairs, nearest first."""
        ...


@runtime_checkable
class KeywordIndex(Protocol):
    """
    Contract for full-text search.

    Implementations:
    - KeywordIndex (Postgres full text via Supabase)
    - InMemoryKeywordIndex (BM25, testing/development)
    """

    def index(self, chunk_id: str, content: str) -> None:
        ...

    def search(self, query_text: str, k: int) -> List[Tuple[str, float]]:
        """Return up to k (chunk_id, rank) pairs, best first."""
        ...


@runtime_checkable
class ChunkRepository(Protocol):
    """Looks up stored chunk records by id."""

    def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        ...
