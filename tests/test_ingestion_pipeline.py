"""Tests for IngestionPipeline, including ingest-then-retrieve with in-memory indexes."""
import sys
import zlib
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
import numpy as np
from unittest.mock import Mock
from errors import ProviderError
from models.chunk import Granularity, MatchSource
from models.document import Document
from models.options import ChunkingOptions, RetrievalOptions
from services.chunking_engine import ChunkingEngine
from services.confidence_scorer import ConfidenceScorer
from services.hierarchical_chunker import HierarchicalChunker
from services.ingestion_pipeline import IngestionPipeline
from services.memory_index import InMemoryKeywordIndex, InMemoryVectorIndex
from services.retrieval_engine import RetrievalEngine
from services.text_utils import TokenCounter


DIMENSION = 256

CAMPUS_TEXT = """Tuition refunds are issued within ten business days after withdrawal.

Housing applications open in March and close in April each year.

Parking permits are sold at the campus security office."""

OPTIONS = ChunkingOptions(max_tokens=60, min_tokens=10, overlap_tokens=0)


class HashingEmbedder:
    """Deterministic bag-of-words embedder for tests."""

    max_input_chars = 2000

    def embed_text(self, text):
        vector = np.zeros(DIMENSION, dtype=np.float32)
        for word in text.lower().replace("?", " ").replace(".", " ").split():
            vector[zlib.crc32(word.encode("utf-8")) % DIMENSION] += 1.0
        norm = np.linalg.norm(vector)
        return (vector / norm if norm else vector).tolist()

    def embed_batch(self, texts):
        return [self.embed_text(t) for t in texts]


class TestIngestionPipeline:
    """Test suite for IngestionPipeline."""

    @pytest.fixture
    def chunker(self):
        return ChunkingEngine(token_counter=TokenCounter("estimate"))

    @pytest.fixture
    def vector_index(self):
        return InMemoryVectorIndex(dimension=DIMENSION)

    @pytest.fixture
    def keyword_index(self):
        return InMemoryKeywordIndex()

    @pytest.fixture
    def pipeline(self, chunker, vector_index, keyword_index):
        return IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index)

    def test_ingest(self, pipeline, vector_index, keyword_index):
        report = pipeline.ingest(Document(id="campus", text=CAMPUS_TEXT), OPTIONS)

        assert report.chunks_created == 3
        assert report.chunks_embedded == 3
        assert report.chunks_stored == 3
        assert report.chunks_keyword_indexed == 3
        assert report.errors == []
        assert report.succeeded
        assert vector_index.count() == 3
        assert [c for c, _ in keyword_index.search("parking", k=5)] == ["campus_v1_paragraph_2"]

    def test_empty_document(self, pipeline, vector_index):
        report = pipeline.ingest(Document(id="empty", text="  "), OPTIONS)

        assert report.chunks_created == 0
        assert not report.succeeded
        assert vector_index.count() == 0

    def test_invalid_batch_size(self, chunker, vector_index, keyword_index):
        with pytest.raises(ValueError):
            IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index, batch_size=0)

    def test_failed_embedding_batch_keeps_chunks_searchable(self, chunker, keyword_index):
        vector_index = InMemoryVectorIndex(dimension=4)
        embedder = Mock()
        embedder.max_input_chars = 2000
        embedder.embed_batch.side_effect = [ProviderError("provider down"), [[1.0, 0.0, 0.0, 0.0]]]
        pipeline = IngestionPipeline(chunker, embedder, vector_index, keyword_index, batch_size=2)

        report = pipeline.ingest(Document(id="campus", text=CAMPUS_TEXT), OPTIONS)

        assert report.chunks_embedded == 1
        assert report.chunks_stored == 3
        assert len(report.errors) == 1
        assert report.succeeded
        assert [c for c, _ in vector_index.query([1.0, 0.0, 0.0, 0.0], k=5)] == ["campus_v1_paragraph_2"]
        assert keyword_index.search("tuition", k=5)[0][0] == "campus_v1_paragraph_0"

    def test_keyword_failure_recorded(self, chunker, vector_index):
        keyword_index = Mock(spec=InMemoryKeywordIndex)
        keyword_index.index.side_effect = ProviderError("index down")
        pipeline = IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index)

        report = pipeline.ingest(Document(id="campus", text=CAMPUS_TEXT), OPTIONS)

        assert report.chunks_stored == 3
        assert report.chunks_keyword_indexed == 0
        assert "Keyword indexing failed" in report.errors[0]

    def test_ingest_many_isolates_failures(self, chunker, keyword_index):
        vector_index = Mock(spec=InMemoryVectorIndex)

        def upsert(chunk_id, vector, metadata):
            if metadata["document_id"] == "broken":
                raise ProviderError("write failed")

        vector_index.upsert.side_effect = upsert
        pipeline = IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index)

        reports = pipeline.ingest_many(
            [
                Document(id="broken", text=CAMPUS_TEXT),
                Document(id="campus", text=CAMPUS_TEXT),
            ],
            OPTIONS,
        )

        assert [r.document_id for r in reports] == ["broken", "campus"]
        assert not reports[0].succeeded
        assert "write failed" in reports[0].errors[0]
        assert reports[1].succeeded

    def test_connection_lifecycle(self, chunker, vector_index, keyword_index):
        connection = Mock()

        with IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index, connection=connection):
            connection.open.assert_called_once()

        connection.close.assert_called_once()

    def test_hierarchical_chunker(self, vector_index, keyword_index):
        chunker = HierarchicalChunker(
            ChunkingEngine(token_counter=TokenCounter("estimate")),
            granularities=[Granularity.DOCUMENT, Granularity.PARAGRAPH],
        )
        pipeline = IngestionPipeline(chunker, HashingEmbedder(), vector_index, keyword_index)

        report = pipeline.ingest(
            Document(id="campus", text=CAMPUS_TEXT),
            {Granularity.PARAGRAPH: OPTIONS},
        )

        assert report.chunks_created == 4
        chunks = vector_index.get_chunks(["campus_v1_paragraph_1"])
        assert chunks["campus_v1_paragraph_1"].parent_id == "campus_v1_document_0"


class TestIngestThenRetrieve:
    """Ingest with in-memory indexes, then query through the retrieval engine."""

    @pytest.fixture
    def engine(self):
        vector_index = InMemoryVectorIndex(dimension=DIMENSION)
        keyword_index = InMemoryKeywordIndex()
        embedder = HashingEmbedder()
        pipeline = IngestionPipeline(
            ChunkingEngine(token_counter=TokenCounter("estimate")),
            embedder,
            vector_index,
            keyword_index,
        )
        pipeline.ingest(Document(id="campus", text=CAMPUS_TEXT), OPTIONS)
        engine = RetrievalEngine(embedder, vector_index, keyword_index)
        yield engine
        engine.close()

    def test_best_match_found_by_both_sources(self, engine):
        results = engine.retrieve("When are tuition refunds issued?", RetrievalOptions(top_k=3))

        assert results[0].chunk.chunk_id == "campus_v1_paragraph_0"
        assert results[0].match_source == MatchSource.BOTH
        assert results[0].combined_score > 0.7

    def test_confidence_for_good_match(self, engine):
        results = engine.retrieve("When are tuition refunds issued?", RetrievalOptions(top_k=3))

        record = ConfidenceScorer().score(results, top_k=3)

        assert record.confidence <= results[0].combined_score
        assert record.recommendation in ("answer", "hedge")

    def test_unrelated_query_returns_nothing(self, engine):
        results = engine.retrieve("quantum chromodynamics lectures", RetrievalOptions(similarity_threshold=0.5))

        assert results == []
