"""Services for the DocQA retrieval engine."""
from .chunking_engine import ChunkingEngine
from .hierarchical_chunker import HierarchicalChunker
from .embedding_model import EmbeddingModel
from .index_connection import IndexConnection
from .vector_store import VectorStore
from .keyword_index import KeywordIndex
from .memory_index import InMemoryVectorIndex, InMemoryKeywordIndex
from .retrieval_engine import RetrievalEngine, RetrievalSettings
from .confidence_scorer import ConfidenceScorer, ConfidenceSettings
from .ingestion_pipeline import IngestionPipeline, IngestionReport

__all__ = ['ChunkingEngine', 'HierarchicalChunker', 'EmbeddingModel', 'IndexConnection', 'VectorStore', 'KeywordIndex', 'InMemoryVectorIndex', 'InMemoryKeywordIndex', 'RetrievalEngine', 'RetrievalSettings', 'ConfidenceScorer', 'ConfidenceSettings', 'IngestionPipeline', 'IngestionReport']
