"""Cross-encoder re-ranking with sentence-transformers."""

import logging
import threading
from typing import Any, Sequence

from chunkhub.errors import UpstreamFault
from chunkhub.interfaces import Reranker

logger = logging.getLogger(__name__)


class CrossEncoderReranker(Reranker):
    """Scores (query, document) pairs with a cross-encoder.

    Models load lazily on first use, one per model name, and inference runs
    under a lock since a model instance is not safe to share across threads.
    """

    def __init__(self, device: str | None = None, batch_size: int = 16) -> None:
        self._device = device
        self._batch_size = batch_size
        self._models: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _model(self, model_name: str) -> Any:
        model = self._models.get(model_name)
        if model is None:
            # Imported here so torch only loads when re-ranking is first used.
            from sentence_transformers import CrossEncoder

            logger.info(f"Loading cross-encoder {model_name}")
            model = CrossEncoder(model_name, device=self._device)
            self._models[model_name] = model
        return model

    def rerank(self, query: str, documents: Sequence[str], model_name: str) -> list[float]:
        """Score each document against the query.

        Raises:
            UpstreamFault: If the model cannot be loaded or inference fails.
        """
        if not documents:
            return []

        pairs = [[query, document] for document in documents]
        try:
            with self._lock:
                scores = self._model(model_name).predict(pairs, batch_size=self._batch_size)
        except (OSError, RuntimeError, ValueError) as e:
            logger.error(f"Cross-encoder {model_name} failed on {len(pairs)} pairs: {e}")
            raise UpstreamFault(f"Re-ranking failed: {e}") from e

        return [float(score) for score in scores]
