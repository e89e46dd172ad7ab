"""LiteLLM-based embedding client."""

import logging
import time

from litellm import aembedding
from litellm.exceptions import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    RateLimitError,
)

from chunkhub.config import DatasetConfig
from chunkhub.errors import UpstreamFault
from chunkhub.interfaces import EmbeddingClient

logger = logging.getLogger(__name__)


class LiteLLMEmbeddingClient(EmbeddingClient):
    """Embeds text through any provider LiteLLM supports.

    The model comes from the dataset configuration, so datasets can use
    different models as long as the vector size matches their collection.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        """Initialize embedding client.

        Args:
            api_key: Optional API key (uses the provider env var if not provided).
            api_base: Optional custom endpoint.
        """
        self.api_key = api_key
        self.api_base = api_base

    def _fail(self, model: str, start_time: float, message: str, e: Exception) -> UpstreamFault:
        duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.error(f"Embedding call to {model} failed after {duration_ms}ms: {e}")
        return UpstreamFault(f"{message}: {e}")

    async def embed(self, text: str, config: DatasetConfig) -> list[float]:
        """Embed one text.

        Args:
            text: Plain text to embed.
            config: Dataset configuration naming the model and vector size.

        Returns:
            Embedding of length ``config.embedding_size``.

        Raises:
            UpstreamFault: On any provider failure or a wrong-sized vector.
        """
        kwargs: dict = {
            "model": config.embedding_model,
            "input": [text],
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        start_time = time.perf_counter()
        try:
            response = await aembedding(**kwargs)
        except AuthenticationError as e:
            raise self._fail(config.embedding_model, start_time, "Authentication failed", e) from e
        except RateLimitError as e:
            raise self._fail(config.embedding_model, start_time, "Rate limit exceeded", e) from e
        except APIConnectionError as e:
            raise self._fail(config.embedding_model, start_time, "Connection failed", e) from e
        except APIError as e:
            raise self._fail(config.embedding_model, start_time, "Embedding API error", e) from e

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(f"Embedded {len(text)} chars with {config.embedding_model} in {duration_ms}ms")

        try:
            item = response.data[0]
            embedding = item["embedding"] if isinstance(item, dict) else item.embedding
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise UpstreamFault(f"Malformed embedding response: {e}") from e

        vector = [float(x) for x in embedding]
        if len(vector) != config.embedding_size:
            raise UpstreamFault(
                f"Embedding model {config.embedding_model} returned {len(vector)} "
                f"dimensions, dataset expects {config.embedding_size}"
            )
        return vector
