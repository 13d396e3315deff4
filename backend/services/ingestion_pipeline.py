"""Ingestion pipeline: chunk, embed and index documents."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

import numpy as np

from errors import ProviderError
from models.chunk import Chunk
from models.document import Document
from services.index_connection import IndexConnection
from services.interfaces import EmbeddingProvider, KeywordIndex, VectorIndex
from services.text_utils import truncate_for_embedding
from config import EMBEDDING_BATCH_SIZE, EMBEDDING_MAX_INPUT_CHARS

logger = logging.getLogger(__name__)


class Chunker(Protocol):
    """Chunking strategy: ChunkingEngine (flat) or HierarchicalChunker."""

    def chunk(self, document: Document, options: Any = None) -> List[Chunk]:
        ...


@dataclass
class IngestionReport:
    """Outcome of ingesting one document."""
    document_id: str
    version: int
    chunks_created: int = 0
    chunks_embedded: int = 0
    chunks_stored: int = 0
    chunks_keyword_indexed: int = 0
    errors: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.chunks_created > 0 and self.chunks_stored == self.chunks_created


class IngestionPipeline:
    """Runs documents through chunking, embedding and both indexes.

    The chunker, embedding provider and indexes are injected. When an
    IndexConnection is given, `open()`/`close()` (or the context manager)
    bracket its lifetime.
    """

    def __init__(
        self,
        chunker: Chunker,
        embedding_model: EmbeddingProvider,
        vector_index: VectorIndex,
        keyword_index: KeywordIndex,
        connection: Optional[IndexConnection] = None,
        batch_size: int = EMBEDDING_BATCH_SIZE
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.chunker = chunker
        self.embedding_model = embedding_model
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.connection = connection
        self.batch_size = batch_size

    def open(self) -> "IngestionPipeline":
        if self.connection is not None:
            self.connection.open()
        return self

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()

    def __enter__(self) -> "IngestionPipeline":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def ingest(self, document: Document, options: Any = None) -> IngestionReport:
        """
        Chunk, embed and index one document.

        Chunks whose embedding batch fails are still stored (without a vector)
        and keyword-indexed, so they stay retrievable through keyword search.

        Args:
            document: Document to ingest
            options: Chunker options (ChunkingOptions, or per-granularity dict
                for the hierarchical chunker)

        Returns:
            IngestionReport for the document

        Raises:
            ConfigurationError: If options or index dimensions are invalid
            ProviderError: If the chunk records cannot be stored
        """
        start_time = time.time()
        report = IngestionReport(document_id=document.id, version=document.version)

        chunks = self.chunker.chunk(document, options)
        report.chunks_created = len(chunks)
        if not chunks:
            logger.warning(f"No chunks produced for {document.id} v{document.version}")
            return report

        report.chunks_embedded = self._embed(chunks, report)

        self._store(chunks)
        report.chunks_stored = len(chunks)

        try:
            self._index_keywords(chunks)
            report.chunks_keyword_indexed = len(chunks)
        except ProviderError as e:
            message = f"Keyword indexing failed for {document.id}: {str(e)}"
            logger.error(message)
            report.errors.append(message)

        report.elapsed_seconds = time.time() - start_time
        logger.info(
            f"Ingested {document.id} v{document.version}: {report.chunks_created} chunks, "
            f"{report.chunks_embedded} embedded in {report.elapsed_seconds:.1f}s"
        )
        return report

    def ingest_many(self, documents: List[Document], options: Any = None) -> List[IngestionReport]:
        """Ingest documents one by one; a provider failure only fails its own document."""
        reports = []
        for document in documents:
            try:
                reports.append(self.ingest(document, options))
            except ProviderError as e:
                message = f"Failed to ingest {document.id} v{document.version}: {str(e)}"
                logger.error(message)
                reports.append(IngestionReport(
                    document_id=document.id,
                    version=document.version,
                    errors=[message],
                ))

        succeeded = sum(1 for r in reports if r.succeeded)
        logger.info(f"Ingestion finished: {succeeded}/{len(documents)} documents succeeded")
        return reports

    def _embed(self, chunks: List[Chunk], report: IngestionReport) -> int:
        """Embed chunks in batches; a failed batch leaves its chunks without embeddings."""
        limit = getattr(self.embedding_model, "max_input_chars", EMBEDDING_MAX_INPUT_CHARS)
        embedded = 0
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            try:
                vectors = self.embedding_model.embed_batch(
                    [truncate_for_embedding(c.content, limit) for c in batch]
                )
            except (ProviderError, ValueError) as e:
                message = f"Embedding batch {start // self.batch_size} failed: {str(e)}"
                logger.warning(message)
                report.errors.append(message)
                continue
            for chunk, vector in zip(batch, vectors):
                chunk.embedding = np.asarray(vector, dtype=np.float32)
            embedded += len(batch)
        return embedded

    def _store(self, chunks: List[Chunk]) -> None:
        items = [(c.chunk_id, c.embedding, c.to_record()) for c in chunks]
        upsert_many = getattr(self.vector_index, "upsert_many", None)
        if upsert_many is not None:
            upsert_many(items)
            return
        for chunk_id, vector, metadata in items:
            self.vector_index.upsert(chunk_id, vector, metadata)

    def _index_keywords(self, chunks: List[Chunk]) -> None:
        index_many = getattr(self.keyword_index, "index_many", None)
        if index_many is not None:
            index_many([(c.chunk_id, c.content) for c in chunks])
            return
        for chunk in chunks:
            self.keyword_index.index(chunk.chunk_id, chunk.content)
