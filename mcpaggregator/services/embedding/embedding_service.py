# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/embedding_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Embedding Service.

Wraps an :class:`EmbeddingProvider` with input validation, batching, L2
normalization and an exact-text cache. Every vector handed out is a unit
``numpy`` array (or all zeros when the text has no features), so cosine
similarity reduces to a dot product.

Examples:
    >>> import asyncio
    >>> from mcpaggregator.services.embedding.providers import HashingProvider
    >>> service = EmbeddingService(HashingProvider(dimension=64))
    >>> v = asyncio.run(service.embed("list open pull requests"))
    >>> round(float((v ** 2).sum()), 5)
    1.0
    >>> service.cache_info()["size"]
    1
"""

# Standard
from collections import OrderedDict
import logging
from typing import Any, Dict, List, Optional

# Third-Party
import numpy as np

# First-Party
from mcpaggregator.config import settings, Settings
from mcpaggregator.services.embedding.providers import EmbeddingProvider, EmbeddingUnavailableError, HashingProvider, OpenAIProvider, SentenceTransformerProvider

logger = logging.getLogger(__name__)

# Validation constants
MAX_TEXT_LENGTH = 8192


class EmbeddingValidationError(Exception):
    """Raised when embedding input validation fails."""


class TextTooLongError(EmbeddingValidationError):
    """Raised when input text exceeds maximum length."""

    def __init__(self, length: int, max_length: int = MAX_TEXT_LENGTH):
        self.length = length
        self.max_length = max_length
        super().__init__(f"Text length {length} exceeds maximum allowed length of {max_length}")


class EmptyTextError(EmbeddingValidationError):
    """Raised when input text is empty or whitespace only."""

    def __init__(self):
        super().__init__("Text cannot be empty or whitespace only")


def _validate_text(text: str) -> None:
    """Validate a single text input.

    Args:
        text: The text to validate.

    Raises:
        EmptyTextError: If text is empty or whitespace only.
        TextTooLongError: If text exceeds maximum length.

    Examples:
        >>> _validate_text("ok")
        >>> _validate_text("   ")
        Traceback (most recent call last):
        ...
        mcpaggregator.services.embedding.embedding_service.EmptyTextError: Text cannot be empty or whitespace only
    """
    if not text or not text.strip():
        raise EmptyTextError()
    if len(text) > MAX_TEXT_LENGTH:
        raise TextTooLongError(len(text))


def normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize the rows of ``vectors``; zero rows stay zero.

    Args:
        vectors: ``(n, d)`` array.

    Returns:
        Normalized float32 copy.

    Examples:
        >>> normalize(np.array([[3.0, 4.0], [0.0, 0.0]])).tolist()
        [[0.6000000238418579, 0.800000011920929], [0.0, 0.0]]
    """
    vectors = np.asarray(vectors, dtype=np.float32)
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return vectors / norms


def build_provider(cfg: Settings) -> EmbeddingProvider:
    """Create the provider selected by ``cfg.embedding_provider``.

    Args:
        cfg: Settings to read.

    Returns:
        The provider instance.

    Raises:
        EmbeddingUnavailableError: If the OpenAI provider is selected without an API key.

    Examples:
        >>> build_provider(Settings(embedding_provider="hashing", embedding_dimension=128)).get_dimension()
        128
        >>> type(build_provider(Settings(embedding_provider="sentence-transformers"))).__name__
        'SentenceTransformerProvider'
    """
    if cfg.embedding_provider == "sentence-transformers":
        return SentenceTransformerProvider(model=cfg.embedding_model)
    if cfg.embedding_provider == "openai":
        if cfg.embedding_api_key is None:
            raise EmbeddingUnavailableError("MCPAGG_EMBEDDING_API_KEY is required for the openai embedding provider")
        model = cfg.embedding_model if cfg.embedding_model.startswith("text-embedding") else OpenAIProvider.DEFAULT_MODEL
        return OpenAIProvider(api_key=cfg.embedding_api_key.get_secret_value(), model=model, api_base=cfg.embedding_api_base)
    return HashingProvider(dimension=cfg.embedding_dimension)


class EmbeddingService:
    """Caching, normalizing front end for an embedding provider."""

    def __init__(self, provider: EmbeddingProvider, cache_size: int = 4096):
        """Create the service.

        Args:
            provider: Provider generating raw vectors.
            cache_size: Maximum number of cached texts; 0 disables the cache.
        """
        self.provider = provider
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the provider. Idempotent.

        Raises:
            EmbeddingUnavailableError: If the provider reports it cannot start.
            EmbeddingProviderError: If the provider fails to load.
        """
        if self._initialized:
            return
        reason = self.provider.unavailable_reason()
        if reason:
            raise EmbeddingUnavailableError(f"Embedding provider {self.provider.get_model_name()} is not available: {reason}")
        await self.provider.initialize()
        self._initialized = True
        logger.info(f"Embedding service ready ({self.provider.get_model_name()}, dimension {self.provider.get_dimension()})")

    @property
    def dimension(self) -> int:
        """Vector dimension of the underlying provider."""
        return self.provider.get_dimension()

    async def embed(self, text: str) -> np.ndarray:
        """Embed one text.

        Args:
            text: Input text.

        Returns:
            Unit vector of shape ``(dimension,)``.
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> np.ndarray:
        """Embed many texts, serving repeats from the cache.

        Args:
            texts: Input texts.

        Returns:
            Array of shape ``(len(texts), dimension)``.

        Raises:
            EmptyTextError: If a text is empty.
            TextTooLongError: If a text is too long.
            EmbeddingProviderError: If the provider fails.
        """
        for text in texts:
            _validate_text(text)
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)

        cached: Dict[str, np.ndarray] = {}
        for text in dict.fromkeys(texts):
            if text in self._cache:
                self._cache.move_to_end(text)
                cached[text] = self._cache[text]
        missing = [t for t in dict.fromkeys(texts) if t not in cached]
        self._hits += len(texts) - len(missing)
        self._misses += len(missing)

        fresh: Dict[str, np.ndarray] = {}
        batch_size = max(1, self.provider.max_batch_size)
        for start in range(0, len(missing), batch_size):
            chunk = missing[start : start + batch_size]
            vectors = normalize(self.provider.as_matrix(chunk, await self.provider.embed_batch(chunk)))
            fresh.update(zip(chunk, vectors))

        result = np.stack([fresh[t] if t in fresh else cached[t] for t in texts])
        for text, vector in fresh.items():
            self._remember(text, vector)
        return result

    def _remember(self, text: str, vector: np.ndarray) -> None:
        if self.cache_size <= 0:
            return
        self._cache[text] = vector
        self._cache.move_to_end(text)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def cache_info(self) -> Dict[str, Any]:
        """Cache statistics: ``size``, ``hits``, ``misses``."""
        return {"size": len(self._cache), "hits": self._hits, "misses": self._misses}

    def clear_cache(self) -> None:
        """Drop every cached vector."""
        self._cache.clear()

    async def close(self) -> None:
        """Close the provider and drop the cache."""
        self.clear_cache()
        await self.provider.close()
        self._initialized = False


_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service(cfg: Optional[Settings] = None) -> EmbeddingService:
    """Return the process-wide embedding service, creating it on first use.

    Args:
        cfg: Settings used when the service is created.

    Returns:
        EmbeddingService: the shared instance.
    """
    global _embedding_service  # pylint: disable=global-statement
    if _embedding_service is None:
        cfg = cfg or settings
        _embedding_service = EmbeddingService(build_provider(cfg), cache_size=cfg.embedding_cache_size)
    return _embedding_service
