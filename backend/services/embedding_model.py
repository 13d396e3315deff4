"""Embedding provider backed by the Hugging Face Inference API."""
import time
import logging
from typing import List
import httpx

from errors import ProviderError
from services.text_utils import truncate_for_embedding
from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL, EMBEDDING_MAX_INPUT_CHARS

logger = logging.getLogger(__name__)


class EmbeddingModel:
    """Wrapper for Hugging Face Inference API embedding model."""

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        max_input_chars: int = EMBEDDING_MAX_INPUT_CHARS,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = 120.0
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: sentence-transformers/all-mpnet-base-v2)
            max_input_chars: Longest text the model accepts; longer input is truncated
            max_retries: Maximum number of attempts for 503s, timeouts and network errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_input_chars = max_input_chars
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.api_url = (
            f"https://router.huggingface.co/hf-inference/models/{model_name}"
            f"/pipeline/feature-extraction"
        )

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed; truncated to max_input_chars

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            ProviderError: If API request fails after all retries
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return self._embed_with_retry([self._truncate(text)])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Args:
            texts: List of texts to embed; the result is aligned with this list

        Returns:
            List of embedding vectors

        Raises:
            ValueError: If texts list is empty or contains empty strings
            ProviderError: If API request fails after all retries
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        if any(not t or not t.strip() for t in texts):
            raise ValueError("Texts in batch cannot be empty")

        embeddings = self._embed_with_retry([self._truncate(t) for t in texts])
        if len(embeddings) != len(texts):
            raise ProviderError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}",
                source="embedding",
            )
        return embeddings

    def _truncate(self, text: str) -> str:
        truncated = truncate_for_embedding(text, self.max_input_chars)
        if len(truncated) < len(text):
            logger.debug(f"Truncated embedding input from {len(text)} to {len(truncated)} chars")
        return truncated

    def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        Call the HF API with exponential backoff.

        HF free tier models "sleep" and take 15-20s to load on first query, so
        503s, timeouts and network errors are retried; 401 and 429 are not.

        Raises:
            ProviderError: If API request fails after all retries
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True
            }
        }

        delay = self.initial_delay
        last_error = None

        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        self.api_url,
                        headers=headers,
                        json=payload
                    )

                elapsed = time.time() - start_time

                # Model loading
                if response.status_code == 503:
                    error_data = response.json() if response.text else {}
                    estimated_time = error_data.get("estimated_time", delay)

                    logger.warning(
                        f"Model loading (503) on attempt {attempt + 1}/{self.max_retries}. "
                        f"Estimated time: {estimated_time}s. Retrying in {delay}s..."
                    )

                    last_error = f"Model failed to load after {self.max_retries} attempts"
                    if attempt < self.max_retries - 1:
                        time.sleep(delay)
                        delay = min(delay * 2, 60.0)
                        continue
                    break

                if response.status_code == 429:
                    logger.error("Rate limit exceeded for Hugging Face API")
                    raise ProviderError("Rate limit exceeded. Please try again later.", source="embedding")

                if response.status_code == 401:
                    logger.error("Authentication failed for Hugging Face API")
                    raise ProviderError("Invalid API key", source="embedding")

                if response.status_code != 200:
                    error_msg = f"API request failed with status {response.status_code}: {response.text}"
                    logger.error(error_msg)
                    raise ProviderError(error_msg, source="embedding")

                embeddings = response.json()

                if elapsed > 10.0:
                    logger.info(
                        f"Model loading delay detected: {elapsed:.1f}s for {len(texts)} texts "
                        f"(attempt {attempt + 1})"
                    )
                else:
                    logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")

                return embeddings

            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

            except httpx.RequestError as e:
                last_error = f"Network error: {str(e)}"
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

            if attempt < self.max_retries - 1:
                time.sleep(delay)
                delay = min(delay * 2, 60.0)

        error_msg = f"Failed to generate embeddings after {self.max_retries} attempts. Last error: {last_error}"
        logger.error(error_msg)
        raise ProviderError(error_msg, source="embedding")

    def warmup(self) -> bool:
        """
        Warm up the model with a dummy query to avoid cold start delays.

        Returns:
            True if warmup successful, False otherwise
        """
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()
            self.embed_text("warmup query")
            logger.info(f"Model warmup completed in {time.time() - start_time:.1f}s")
            return True
        except ProviderError as e:
            logger.error(f"Model warmup failed: {str(e)}")
            return False
