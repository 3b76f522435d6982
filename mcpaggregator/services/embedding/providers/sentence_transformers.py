# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/providers/sentence_transformers.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Sentence-Transformers Embedding Provider.

Runs a local transformer model (``all-MiniLM-L6-v2`` by default) producing
mean-pooled, normalized sentence embeddings. The ``sentence-transformers``
package is an optional extra and is imported when the model is loaded, so
the aggregator runs without it when another provider is configured.
"""

# Standard
import asyncio
import importlib.util
import logging
from typing import Any, List, Optional

# First-Party
from mcpaggregator.services.embedding.providers.base import EmbeddingAPIError, EmbeddingProvider, EmbeddingUnavailableError

logger = logging.getLogger(__name__)


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model.

    Args:
        model: Model id on the Hugging Face hub.
        dimension: Expected dimension, used before the model is loaded.

    Examples:
        >>> provider = SentenceTransformerProvider()
        >>> provider.get_model_name(), provider.get_dimension()
        ('all-MiniLM-L6-v2', 384)
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    max_batch_size = 64
    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-MiniLM-L12-v2": 384,
        "all-mpnet-base-v2": 768,
    }

    def __init__(self, model: str = DEFAULT_MODEL, dimension: Optional[int] = None):
        self._model_name = model
        self._dimension = dimension or self.MODEL_DIMENSIONS.get(model, 384)
        self._model: Any = None
        self._load_lock = asyncio.Lock()

    def unavailable_reason(self) -> Optional[str]:
        if importlib.util.find_spec("sentence_transformers") is None:
            return "sentence-transformers is not installed; install the 'sentence-transformers' extra"
        return None

    async def initialize(self) -> None:
        """Load the model in a worker thread.

        Raises:
            EmbeddingUnavailableError: If ``sentence-transformers`` is not installed or the model cannot be loaded.
        """
        async with self._load_lock:
            if self._model is not None:
                return
            try:
                from sentence_transformers import SentenceTransformer  # pylint: disable=import-outside-toplevel
            except ImportError as e:
                raise EmbeddingUnavailableError("sentence-transformers is not installed; install the 'sentence-transformers' extra") from e

            logger.info(f"Loading embedding model {self._model_name}")
            try:
                self._model = await asyncio.to_thread(SentenceTransformer, self._model_name)
            except Exception as e:
                raise EmbeddingAPIError(f"Failed to load embedding model {self._model_name}: {e}") from e
            self._dimension = int(self._model.get_sentence_embedding_dimension() or self._dimension)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Encode ``texts`` with mean pooling and L2 normalization.

        Args:
            texts: Input texts.

        Returns:
            One vector per text.

        Raises:
            EmbeddingAPIError: If encoding fails.
        """
        if self._model is None:
            await self.initialize()
        try:
            vectors = await asyncio.to_thread(self._model.encode, texts, normalize_embeddings=True, convert_to_numpy=True, show_progress_bar=False)
        except Exception as e:
            raise EmbeddingAPIError(f"Embedding model {self._model_name} failed: {e}") from e
        return [v.tolist() for v in vectors]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model_name

    async def close(self) -> None:
        self._model = None
