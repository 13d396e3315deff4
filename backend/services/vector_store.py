"""Vector index implementation using Supabase pgvector."""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from errors import ConfigurationError, ProviderError
from models.chunk import Chunk
from services.index_connection import IndexConnection
from config import CHUNKS_TABLE, DISTANCE_METRIC, EMBEDDING_DIMENSION, VECTOR_MATCH_FUNCTION

logger = logging.getLogger(__name__)

# Everything except the embedding, which pgvector returns as text
CHUNK_COLUMNS = (
    "chunk_id,document_id,version,ordinal,granularity,content,token_count,char_count,"
    "word_count,heading,quality_score,content_type,parent_id,previous_id,next_id,"
    "start_offset,end_offset,overlap_word_count"
)

# pgvector distance operator for each DISTANCE_METRIC. match_chunks must order by the
# operator of the configured metric; <#> returns the negative inner product
DISTANCE_OPERATORS = {
    "cosine": "<=>",
    "l2": "<->",
    "inner_product": "<#>",
}

# The RPC function is provisioned in Supabase with (cosine shown):
# CREATE OR REPLACE FUNCTION match_chunks(
#   query_embedding vector(768),
#   match_count int,
#   filter jsonb DEFAULT '{}'
# )
# RETURNS TABLE (chunk_id text, distance float)
# LANGUAGE sql STABLE
# AS $$
#   SELECT chunk_id, embedding <=> query_embedding AS distance
#   FROM document_chunks
#   WHERE embedding IS NOT NULL AND to_jsonb(document_chunks) @> filter
#   ORDER BY embedding <=> query_embedding
#   LIMIT match_count;
# $$;


class VectorStore:
    """Store chunk records and embeddings; nearest-neighbour search via pgvector."""

    def __init__(
        self,
        connection: IndexConnection,
        table_name: str = CHUNKS_TABLE,
        dimension: int = EMBEDDING_DIMENSION,
        distance_metric: str = DISTANCE_METRIC
    ):
        """
        Initialize the vector store.

        Args:
            connection: Index connection handle (opened by the caller)
            table_name: Name of the table holding chunk records
            dimension: Embedding dimensionality the table was created with
            distance_metric: Distance operator of the match function (cosine, l2, inner_product)

        Raises:
            ConfigurationError: If the distance metric is unknown
        """
        self.connection = connection
        self.table_name = table_name
        self.dimension = dimension
        if distance_metric not in DISTANCE_OPERATORS:
            raise ConfigurationError(f"Unknown distance metric: {distance_metric}")
        self.distance_metric = distance_metric
        self.distance_operator = DISTANCE_OPERATORS[distance_metric]

        logger.info(f"Initialized VectorStore with table: {table_name} (dim={dimension}, {distance_metric})")

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise ConfigurationError(
                f"Vector dimension {len(vector)} does not match index dimension {self.dimension}"
            )

    def upsert(self, chunk_id: str, vector: Optional[Sequence[float]], metadata: Dict[str, Any]) -> None:
        """
        Store or replace one chunk record.

        Args:
            chunk_id: Chunk identifier (primary key)
            vector: Embedding, or None when embedding failed (keyword search only)
            metadata: Chunk record columns (see Chunk.to_record)

        Raises:
            ConfigurationError: If the vector has the wrong dimension
            ProviderError: If the database operation fails
        """
        self.upsert_many([(chunk_id, vector, metadata)])

    def upsert_many(self, items: List[Tuple[str, Optional[Sequence[float]], Dict[str, Any]]]) -> None:
        """Upsert several chunk records in one request."""
        if not items:
            return

        records = []
        for chunk_id, vector, metadata in items:
            if vector is not None:
                self._check_dimension(vector)
            record = dict(metadata)
            record["chunk_id"] = chunk_id
            record["embedding"] = [float(v) for v in vector] if vector is not None else None
            records.append(record)

        try:
            self.connection.client.table(self.table_name).upsert(records).execute()
            logger.debug(f"Upserted {len(records)} chunk records into {self.table_name}")
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to upsert chunks into vector store: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="vector") from e

    def query(
        self,
        vector: Sequence[float],
        k: int,
        filter: Optional[Dict[str, Any]] = None
    ) -> List[Tuple[str, float]]:
        """
        Find the k nearest chunks to a query vector.

        Args:
            vector: Query embedding
            k: Number of neighbours to return
            filter: Optional metadata equality filter, e.g. {"document_id": "handbook"}

        Returns:
            List of (chunk_id, distance), nearest first

        Raises:
            ValueError: If k is not positive
            ConfigurationError: If the vector has the wrong dimension
            ProviderError: If the database operation fails
        """
        if k <= 0:
            raise ValueError("k must be positive")
        self._check_dimension(vector)

        try:
            response = self.connection.client.rpc(
                VECTOR_MATCH_FUNCTION,
                {
                    "query_embedding": [float(v) for v in vector],
                    "match_count": k,
                    "filter": filter or {},
                }
            ).execute()
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to search vector store: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="vector") from e

        results = [(row["chunk_id"], float(row["distance"])) for row in response.data]
        logger.debug(f"Vector search returned {len(results)} neighbours")
        return results

    def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        """
        Load chunk records by id.

        Returns:
            Mapping of chunk_id to Chunk for the ids that exist

        Raises:
            ProviderError: If the database operation fails
        """
        if not chunk_ids:
            return {}

        try:
            response = (
                self.connection.client.table(self.table_name)
                .select(CHUNK_COLUMNS)
                .in_("chunk_id", list(chunk_ids))
                .execute()
            )
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to load chunks from vector store: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="vector") from e

        return {row["chunk_id"]: Chunk.from_record(row) for row in response.data}

    def clear(self) -> None:
        """
        Clear all chunks from the vector store.

        Raises:
            ProviderError: If the database operation fails
        """
        try:
            self.connection.client.table(self.table_name).delete().neq("chunk_id", "").execute()
            logger.info("Cleared all chunks from vector store")
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to clear vector store: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="vector") from e

    def count(self) -> int:
        """
        Get the total number of chunks in the vector store.

        Raises:
            ProviderError: If the database operation fails
        """
        try:
            response = self.connection.client.table(self.table_name).select("chunk_id", count="exact").execute()
            return response.count if response.count is not None else 0
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to count chunks in vector store: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="vector") from e
