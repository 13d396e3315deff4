"""In-memory vector and keyword indexes for development and tests."""
import logging
import re
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from rank_bm25 import BM25Plus

from errors import ConfigurationError
from models.chunk import Chunk
from config import EMBEDDING_DIMENSION

logger = logging.getLogger(__name__)


def _tokenize(text: str) -> List[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


class InMemoryVectorIndex:
    """Brute-force cosine search over numpy vectors; also serves chunk lookups."""

    distance_metric = "cosine"

    def __init__(self, dimension: int = EMBEDDING_DIMENSION):
        self.dimension = dimension
        self._records: Dict[str, Dict[str, Any]] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def upsert(self, chunk_id: str, vector: Optional[Sequence[float]], metadata: Dict[str, Any]) -> None:
        record = dict(metadata)
        record["chunk_id"] = chunk_id
        with self._lock:
            self._records[chunk_id] = record
            if vector is None:
                self._vectors.pop(chunk_id, None)
                return
            array = np.asarray(vector, dtype=np.float32)
            if array.shape != (self.dimension,):
                raise ConfigurationError(
                    f"Vector dimension {array.shape[-1]} does not match index dimension {self.dimension}"
                )
            self._vectors[chunk_id] = array

    def query(
        self,
        vector: Sequence[float],
        k: int,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[Tuple[str, float]]:
        query = np.asarray(vector, dtype=np.float32)
        if query.shape != (self.dimension,):
            raise ConfigurationError(
                f"Vector dimension {query.shape[-1]} does not match index dimension {self.dimension}"
            )

        with self._lock:
            ids = [
                chunk_id for chunk_id in self._vectors
                if not filter or all(self._records[chunk_id].get(key) == value for key, value in filter.items())
            ]
            if not ids:
                return []
            matrix = np.stack([self._vectors[chunk_id] for chunk_id in ids])

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        distances = 1.0 - (matrix @ query) / norms
        order = np.argsort(distances, kind="stable")[:k]
        return [(ids[i], float(distances[i])) for i in order]

    def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        with self._lock:
            found = {}
            for chunk_id in chunk_ids:
                record = self._records.get(chunk_id)
                if record is None:
                    continue
                chunk = Chunk.from_record(record)
                chunk.embedding = self._vectors.get(chunk_id)
                found[chunk_id] = chunk
            return found

    def count(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._vectors.clear()


class InMemoryKeywordIndex:
    """BM25 keyword search using rank-bm25.

    BM25+ keeps idf positive on tiny corpora; only chunks sharing at least
    one term with the query are returned.
    """

    def __init__(self):
        self._ids: List[str] = []
        self._tokens: Dict[str, List[str]] = {}
        self._bm25: Optional[BM25Plus] = None
        self._lock = threading.Lock()

    def index(self, chunk_id: str, content: str) -> None:
        with self._lock:
            if chunk_id not in self._tokens:
                self._ids.append(chunk_id)
            self._tokens[chunk_id] = _tokenize(content)
            self._bm25 = None

    def search(self, query_text: str, k: int) -> List[Tuple[str, float]]:
        terms = _tokenize(query_text)
        if not terms or k <= 0:
            return []

        with self._lock:
            corpus = [self._tokens[chunk_id] for chunk_id in self._ids]
            if not any(corpus):
                return []
            if self._bm25 is None:
                self._bm25 = BM25Plus(corpus)
            scores = self._bm25.get_scores(terms)

        query_terms = set(terms)
        matches = [
            (self._ids[i], float(scores[i]))
            for i in range(len(corpus))
            if query_terms.intersection(corpus[i])
        ]
        matches.sort(key=lambda m: (-m[1], m[0]))
        return matches[:k]

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()
            self._tokens.clear()
            self._bm25 = None
