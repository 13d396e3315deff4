"""Hybrid retrieval engine: concurrent vector and keyword search with score fusion."""
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from errors import ConfigurationError, ProviderError, RetrievalError
from models.chunk import Chunk, Granularity, MatchSource, RetrievalResult
from models.options import RetrievalOptions, RetrievalStrategy
from services.interfaces import ChunkRepository, EmbeddingProvider, KeywordIndex, VectorIndex
from services.text_utils import tokenize_query, truncate_for_embedding
from config import (
    VECTOR_WEIGHT,
    KEYWORD_WEIGHT,
    AGREEMENT_BONUS,
    SINGLE_SOURCE_PENALTY,
    DEDUP_MARGIN,
    OVERFETCH_FACTOR,
    EMBEDDING_TIMEOUT,
    VECTOR_QUERY_TIMEOUT,
    KEYWORD_QUERY_TIMEOUT,
    EMBEDDING_MAX_INPUT_CHARS,
)

logger = logging.getLogger(__name__)


@dataclass
class RetrievalSettings:
    """Engine-level tunables; defaults come from config."""
    vector_weight: float = VECTOR_WEIGHT
    keyword_weight: float = KEYWORD_WEIGHT
    agreement_bonus: float = AGREEMENT_BONUS
    single_source_penalty: float = SINGLE_SOURCE_PENALTY
    dedup_margin: float = DEDUP_MARGIN
    overfetch_factor: int = OVERFETCH_FACTOR
    embedding_timeout: float = EMBEDDING_TIMEOUT
    vector_timeout: float = VECTOR_QUERY_TIMEOUT
    keyword_timeout: float = KEYWORD_QUERY_TIMEOUT


def distance_to_similarity(distance: float, metric: str) -> float:
    """
    Convert an index distance to a similarity in [0, 1].

    Args:
        distance: Distance reported by the vector index
        metric: "cosine" (1 - d), "l2" (1 / (1 + d)) or "inner_product" (-d, pgvector <#>)

    Raises:
        ConfigurationError: If the metric is unknown
    """
    if metric == "cosine":
        similarity = 1.0 - distance
    elif metric == "l2":
        similarity = 1.0 / (1.0 + distance)
    elif metric == "inner_product":
        similarity = -distance
    else:
        raise ConfigurationError(f"Unknown distance metric: {metric}")
    return max(0.0, min(1.0, similarity))


def normalize_ranks(hits: List[Tuple[str, float]]) -> Dict[str, float]:
    """Scale keyword ranks by the batch maximum into [0, 1]."""
    if not hits:
        return {}
    max_rank = max(rank for _, rank in hits)
    scores: Dict[str, float] = {}
    for chunk_id, rank in hits:
        normalized = rank / max_rank if max_rank > 0 else 0.0
        scores[chunk_id] = max(scores.get(chunk_id, 0.0), max(0.0, min(1.0, normalized)))
    return scores


def _span_contains(outer: Chunk, inner: Chunk) -> bool:
    return outer.start_offset <= inner.start_offset and inner.end_offset <= outer.end_offset


def _is_nested(a: Chunk, b: Chunk) -> bool:
    """One chunk's span encloses the other's, at a different granularity of the same document version."""
    if (a.document_id, a.version) != (b.document_id, b.version):
        return False
    if Granularity(a.granularity) == Granularity(b.granularity):
        return False
    # Records without offsets carry an empty span
    if a.end_offset <= a.start_offset or b.end_offset <= b.start_offset:
        return False
    return _span_contains(a, b) or _span_contains(b, a)


def _is_near_duplicate(a: Chunk, b: Chunk) -> bool:
    """Same passage at two granularities, or adjacent siblings under one parent."""
    if a.parent_id is not None and a.parent_id == b.chunk_id:
        return True
    if b.parent_id is not None and b.parent_id == a.chunk_id:
        return True
    if _is_nested(a, b):
        return True
    if a.parent_id is not None and a.parent_id == b.parent_id:
        return a.next_id == b.chunk_id or a.previous_id == b.chunk_id
    return False


class RetrievalEngine:
    """Orchestrate vector and keyword retrieval, fuse the scores and rank chunks."""

    def __init__(
        self,
        embedding_model: EmbeddingProvider,
        vector_index: VectorIndex,
        keyword_index: KeywordIndex,
        chunk_repository: Optional[ChunkRepository] = None,
        settings: Optional[RetrievalSettings] = None,
        max_workers: int = 4
    ):
        """
        Initialize the retrieval engine.

        Args:
            embedding_model: Embedding provider for query embedding
            vector_index: Vector index for similarity search
            keyword_index: Keyword index for full-text search
            chunk_repository: Chunk record lookup (default: the vector index)
            settings: Fusion weights, dedup margin and per-source timeouts
            max_workers: Threads per search branch (keyword, embed and vector)
        """
        self.embedding_model = embedding_model
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.chunk_repository = chunk_repository or vector_index
        self.settings = settings or RetrievalSettings()
        # Separate pools: a hung embedding provider must not starve keyword search
        self._keyword_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retrieval-keyword")
        self._vector_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retrieval-vector")
        logger.info("Initialized RetrievalEngine")

    def close(self) -> None:
        """Release the worker threads; abandoned searches are not waited for."""
        self._keyword_executor.shutdown(wait=False, cancel_futures=True)
        self._vector_executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "RetrievalEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def retrieve(self, query: str, options: Optional[RetrievalOptions] = None) -> List[RetrievalResult]:
        """
        Retrieve the most relevant chunks for a query.

        1. Embed the query and search the vector index, dropping matches below
           the similarity threshold
        2. Concurrently, search the keyword index and normalize its ranks
        3. Fuse scores by chunk id (agreement bonus for chunks found by both,
           penalty for single-source chunks)
        4. Drop near-duplicates (nested spans across granularities, parent/child,
           or adjacent siblings)
        5. Order by combined score, then quality, then ordinal
        6. Truncate to top_k

        If one source fails or times out under the hybrid strategy, retrieval
        degrades to the other; if both fail the result is empty.

        Args:
            query: User question
            options: Retrieval options (default: RetrievalOptions())

        Returns:
            Ranked results, empty if nothing relevant or empty query

        Raises:
            ConfigurationError: If options are invalid or the index is misconfigured
            RetrievalError: If a forced single-source strategy cannot be served
        """
        options = options or RetrievalOptions()
        options.validate()

        if not query or not query.strip():
            logger.warning("Empty query string provided, returning empty results")
            return []

        strategy = options.strategy
        fetch_k = options.top_k * self.settings.overfetch_factor

        keyword_future = None
        keyword_deadline = 0.0
        if strategy != RetrievalStrategy.VECTOR_ONLY:
            keyword_future = self._keyword_executor.submit(self._keyword_search, query, fetch_k)
            keyword_deadline = time.monotonic() + self.settings.keyword_timeout

        vector_scores: Dict[str, float] = {}
        vector_error = None
        if strategy != RetrievalStrategy.KEYWORD_ONLY:
            try:
                vector_scores = self._vector_search(query, fetch_k, options.similarity_threshold)
            except ProviderError as e:
                vector_error = e

        keyword_scores: Dict[str, float] = {}
        keyword_error = None
        if keyword_future is not None:
            try:
                remaining = max(0.0, keyword_deadline - time.monotonic())
                keyword_scores = self._await(keyword_future, remaining, "keyword")
            except ProviderError as e:
                keyword_error = e

        if vector_error is not None:
            if strategy == RetrievalStrategy.VECTOR_ONLY:
                raise RetrievalError(f"Vector retrieval failed: {vector_error}", source="vector") from vector_error
            logger.warning(f"Vector search unavailable ({vector_error}); degrading to keyword_only")
        if keyword_error is not None:
            if strategy == RetrievalStrategy.KEYWORD_ONLY:
                raise RetrievalError(f"Keyword retrieval failed: {keyword_error}", source="keyword") from keyword_error
            logger.warning(f"Keyword search unavailable ({keyword_error}); degrading to vector_only")
        if vector_error is not None and keyword_error is not None:
            logger.error("Both retrieval sources failed; returning empty results")
            return []

        fused = self._fuse(vector_scores, keyword_scores)
        if not fused:
            logger.info("No chunks found for query")
            return []

        try:
            chunks = self.chunk_repository.get_chunks(sorted(fused))
        except ProviderError as e:
            if strategy != RetrievalStrategy.HYBRID:
                raise RetrievalError(f"Chunk lookup failed: {e}", source="repository") from e
            logger.error(f"Chunk lookup failed ({e}); returning empty results")
            return []

        results = []
        for chunk_id, (similarity, rank, combined, source) in fused.items():
            chunk = chunks.get(chunk_id)
            if chunk is None:
                logger.warning(f"Index returned unknown chunk {chunk_id}; skipping")
                continue
            if chunk.quality_score < options.min_quality_score:
                continue
            results.append(RetrievalResult(
                chunk=chunk,
                similarity_score=similarity,
                rank_score=rank,
                combined_score=combined,
                match_source=source,
            ))

        results.sort(key=lambda r: self._sort_key(r, options.enable_reranking))
        results = self._deduplicate(results)[:options.top_k]

        if results:
            logger.info(
                f"Retrieved {len(results)} chunks (strategy: {strategy.value}, "
                f"top score: {results[0].combined_score:.3f}, "
                f"vector: {len(vector_scores)}, keyword: {len(keyword_scores)})"
            )
        return results

    def _vector_search(self, query: str, k: int, threshold: float) -> Dict[str, float]:
        """Embed the query and return {chunk_id: similarity} at or above threshold."""
        limit = getattr(self.embedding_model, "max_input_chars", EMBEDDING_MAX_INPUT_CHARS)
        text = truncate_for_embedding(query, limit)
        logger.debug(f"Embedding query: {text[:100]}...")

        embedding = self._await(
            self._vector_executor.submit(self.embedding_model.embed_text, text),
            self.settings.embedding_timeout,
            "embedding",
        )
        hits = self._await(
            self._vector_executor.submit(self.vector_index.query, embedding, k),
            self.settings.vector_timeout,
            "vector",
        )

        metric = self.vector_index.distance_metric
        scores: Dict[str, float] = {}
        for chunk_id, distance in hits:
            similarity = distance_to_similarity(distance, metric)
            if similarity >= threshold:
                scores[chunk_id] = max(scores.get(chunk_id, 0.0), similarity)

        logger.debug(f"Vector search: {len(hits)} hits, {len(scores)} above threshold {threshold}")
        return scores

    def _keyword_search(self, query: str, k: int) -> Dict[str, float]:
        """Search the keyword index and return {chunk_id: normalized rank}."""
        terms = tokenize_query(query)
        if not terms:
            logger.debug("No keyword terms left after tokenization")
            return {}
        return normalize_ranks(self.keyword_index.search(" ".join(terms), k))

    def _await(self, future: Future, timeout: float, source: str):
        """Wait for a search step; timeouts and collaborator failures become ProviderError."""
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise ProviderError(f"{source} timed out after {timeout:.1f}s", source=source)
        except (ProviderError, ConfigurationError):
            raise
        except Exception as e:
            raise ProviderError(f"{source} failed: {str(e)}", source=source) from e

    def _fuse(
        self,
        vector_scores: Dict[str, float],
        keyword_scores: Dict[str, float]
    ) -> Dict[str, Tuple[float, float, float, MatchSource]]:
        """Combine per-source scores into (similarity, rank, combined, source) by chunk id."""
        s = self.settings
        fused = {}
        for chunk_id in set(vector_scores) | set(keyword_scores):
            similarity = vector_scores.get(chunk_id)
            rank = keyword_scores.get(chunk_id)
            if similarity is not None and rank is not None:
                combined = s.vector_weight * similarity + s.keyword_weight * rank + s.agreement_bonus
                source = MatchSource.BOTH
            elif similarity is not None:
                combined = similarity * s.single_source_penalty
                source = MatchSource.VECTOR
            else:
                combined = rank * s.single_source_penalty
                source = MatchSource.KEYWORD
            fused[chunk_id] = (
                similarity or 0.0,
                rank or 0.0,
                max(0.0, min(1.0, combined)),
                source,
            )
        return fused

    @staticmethod
    def _sort_key(result: RetrievalResult, rerank: bool):
        quality = -result.chunk.quality_score if rerank else 0.0
        return (-result.combined_score, quality, result.chunk.ordinal, result.chunk.chunk_id)

    def _deduplicate(self, results: List[RetrievalResult]) -> List[RetrievalResult]:
        """Drop a result that nearly duplicates a better-ranked one within dedup_margin."""
        kept: List[RetrievalResult] = []
        for result in results:
            duplicate_of = next(
                (
                    k for k in kept
                    if _is_near_duplicate(result.chunk, k.chunk)
                    and k.combined_score - result.combined_score <= self.settings.dedup_margin
                ),
                None,
            )
            if duplicate_of is not None:
                logger.debug(f"Dropping {result.chunk.chunk_id} as near-duplicate of {duplicate_of.chunk.chunk_id}")
                continue
            kept.append(result)
        return kept
