"""Error taxonomy for the DocQA retrieval engine."""
from typing import Optional


class ConfigurationError(Exception):
    """Invalid options or mismatched index configuration. Never retried."""


class ProviderError(Exception):
    """An external collaborator (embedding provider, vector or keyword index) failed.

    Recoverable: retrieval degrades around the failing source where it can.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(message)


class RetrievalError(ProviderError):
    """A forced single-source strategy could not be served."""
