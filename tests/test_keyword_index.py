"""Unit tests for KeywordIndex."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import MagicMock
from errors import ProviderError
from services.keyword_index import KeywordIndex


class TestKeywordIndex:
    """Test suite for KeywordIndex."""

    @pytest.fixture
    def mock_client(self):
        return MagicMock()

    @pytest.fixture
    def index(self, mock_client):
        connection = MagicMock()
        connection.client = mock_client
        return KeywordIndex(connection, table_name="chunk_keywords")

    def test_index(self, index, mock_client):
        index.index("doc_v1_paragraph_0", "Refunds are issued within ten business days.")

        mock_client.table.assert_called_with("chunk_keywords")
        mock_client.table.return_value.upsert.assert_called_once_with([
            {"chunk_id": "doc_v1_paragraph_0", "content": "Refunds are issued within ten business days."}
        ])

    def test_index_many(self, index, mock_client):
        index.index_many([("a", "first"), ("b", "second")])

        records = mock_client.table.return_value.upsert.call_args[0][0]
        assert [r["chunk_id"] for r in records] == ["a", "b"]

    def test_index_failure(self, index, mock_client):
        mock_client.table.return_value.upsert.return_value.execute.side_effect = Exception("Database error")

        with pytest.raises(ProviderError, match="Failed to index") as exc_info:
            index.index("a", "first")

        assert exc_info.value.source == "keyword"

    def test_search(self, index, mock_client):
        mock_client.rpc.return_value.execute.return_value.data = [
            {"chunk_id": "a", "rank": 0.6},
            {"chunk_id": "b", "rank": 0.2},
        ]

        results = index.search("refund deadline", k=10)

        assert results == [("a", 0.6), ("b", 0.2)]
        mock_client.rpc.assert_called_once_with(
            "search_chunks", {"query_text": "refund deadline", "match_count": 10}
        )

    def test_search_blank_query(self, index, mock_client):
        assert index.search("  ", k=10) == []
        assert index.search("refund", k=0) == []
        mock_client.rpc.assert_not_called()

    def test_search_failure(self, index, mock_client):
        mock_client.rpc.return_value.execute.side_effect = Exception("Database error")

        with pytest.raises(ProviderError, match="Failed to search keyword index"):
            index.search("refund", k=10)

    def test_clear(self, index, mock_client):
        index.clear()

        mock_client.table.return_value.delete.return_value.neq.assert_called_once_with("chunk_id", "")
