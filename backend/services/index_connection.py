"""Explicit Supabase connection handle shared by the index services."""
import logging
from typing import Optional
from supabase import create_client, Client

from errors import ConfigurationError
from config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)


class IndexConnection:
    """Owns the Supabase client for the vector and keyword indexes.

    The client is created by `open()` and released by `close()`; services
    holding the handle fail with ConfigurationError while it is closed.
    """

    def __init__(self, supabase_url: str = SUPABASE_URL, supabase_key: str = SUPABASE_KEY):
        """
        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self._client: Optional[Client] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Client:
        if self._client is None:
            raise ConfigurationError("Index connection is not open")
        return self._client

    def open(self) -> "IndexConnection":
        if self._client is None:
            self._client = create_client(self.supabase_url, self.supabase_key)
            logger.info(f"Opened index connection to {self.supabase_url}")
        return self

    def close(self) -> None:
        if self._client is not None:
            self._client = None
            logger.info("Closed index connection")

    def __enter__(self) -> "IndexConnection":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
