"""Keyword index implementation using Postgres full-text search through Supabase."""
import logging
from typing import List, Tuple

from errors import ConfigurationError, ProviderError
from services.index_connection import IndexConnection
from config import KEYWORD_TABLE, KEYWORD_SEARCH_FUNCTION

logger = logging.getLogger(__name__)

# Table and RPC function provisioned in Supabase with:
# CREATE TABLE chunk_keywords (
#   chunk_id text PRIMARY KEY,
#   content text NOT NULL,
#   tsv tsvector GENERATED ALWAYS AS (to_tsvector('english', content)) STORED
# );
# CREATE INDEX chunk_keywords_tsv_idx ON chunk_keywords USING gin (tsv);
#
# CREATE OR REPLACE FUNCTION search_chunks(query_text text, match_count int)
# RETURNS TABLE (chunk_id text, rank float)
# LANGUAGE sql STABLE
# AS $$
#   SELECT chunk_id, ts_rank(tsv, plainto_tsquery('english', query_text)) AS rank
#   FROM chunk_keywords
#   WHERE tsv @@ plainto_tsquery('english', query_text)
#   ORDER BY rank DESC
#   LIMIT match_count;
# $$;


class KeywordIndex:
    """Full-text index over chunk content, ranked with ts_rank."""

    def __init__(self, connection: IndexConnection, table_name: str = KEYWORD_TABLE):
        """
        Args:
            connection: Index connection handle (opened by the caller)
            table_name: Table holding chunk content and its tsvector
        """
        self.connection = connection
        self.table_name = table_name
        logger.info(f"Initialized KeywordIndex with table: {table_name}")

    def index(self, chunk_id: str, content: str) -> None:
        """
        Index one chunk's content.

        Raises:
            ProviderError: If the database operation fails
        """
        self.index_many([(chunk_id, content)])

    def index_many(self, items: List[Tuple[str, str]]) -> None:
        if not items:
            return
        records = [{"chunk_id": chunk_id, "content": content} for chunk_id, content in items]
        try:
            self.connection.client.table(self.table_name).upsert(records).execute()
            logger.debug(f"Indexed {len(records)} chunks for keyword search")
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to index chunks for keyword search: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="keyword") from e

    def search(self, query_text: str, k: int) -> List[Tuple[str, float]]:
        """
        Full-text search.

        Args:
            query_text: Space-separated query terms
            k: Maximum number of matches

        Returns:
            List of (chunk_id, rank), best first

        Raises:
            ProviderError: If the database operation fails
        """
        if not query_text.strip() or k <= 0:
            return []

        try:
            response = self.connection.client.rpc(
                KEYWORD_SEARCH_FUNCTION,
                {"query_text": query_text, "match_count": k}
            ).execute()
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to search keyword index: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="keyword") from e

        results = [(row["chunk_id"], float(row["rank"])) for row in response.data]
        logger.debug(f"Keyword search returned {len(results)} matches")
        return results

    def clear(self) -> None:
        try:
            self.connection.client.table(self.table_name).delete().neq("chunk_id", "").execute()
            logger.info("Cleared keyword index")
        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to clear keyword index: {str(e)}"
            logger.error(error_msg)
            raise ProviderError(error_msg, source="keyword") from e
