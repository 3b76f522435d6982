# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/providers/base.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Embedding provider contract.

A provider turns a batch of texts into one raw vector per text. The
:class:`~mcpaggregator.services.embedding.embedding_service.EmbeddingService`
drives it in a fixed order:

1. ``unavailable_reason()`` must return ``None``, otherwise the service
   refuses to start and reports the reason.
2. ``initialize()`` loads models or opens clients, once.
3. ``embed_batch()`` is called with at most ``max_batch_size`` texts; its
   output goes through ``as_matrix()`` and is L2-normalized by the service,
   so the semantic index only ever sees unit (or all-zero) float32 rows of
   ``get_dimension()`` columns.
4. ``close()`` on shutdown.
"""

# Standard
from abc import ABC, abstractmethod
from typing import ClassVar, List, Optional, Sequence

# Third-Party
import numpy as np


class EmbeddingProviderError(Exception):
    """An embedding provider could not produce vectors."""


class EmbeddingUnavailableError(EmbeddingProviderError):
    """The provider is not configured, or its backend is not installed."""


class EmbeddingRateLimitError(EmbeddingProviderError):
    """The remote API asked the caller to slow down."""


class EmbeddingAPIError(EmbeddingProviderError):
    """The backend failed or returned vectors the index cannot use."""


class EmbeddingProvider(ABC):
    """Source of raw text vectors for the semantic index."""

    max_batch_size: ClassVar[int] = 100

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> Sequence[Sequence[float]]:
        """Return one raw vector per text, in input order.

        Raises:
            EmbeddingProviderError: If the backend fails.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Number of columns every vector has."""

    @abstractmethod
    def get_model_name(self) -> str:
        """Model identifier used in logs and errors."""

    async def embed(self, text: str) -> List[float]:
        return list((await self.embed_batch([text]))[0])

    def unavailable_reason(self) -> Optional[str]:
        """Why the provider cannot start, or ``None`` when it can."""
        return None

    async def initialize(self) -> None:
        """Load models or open clients."""

    async def close(self) -> None:
        """Release models or clients."""

    def as_matrix(self, texts: Sequence[str], vectors: Sequence[Sequence[float]]) -> np.ndarray:
        """Check ``vectors`` against ``texts`` and the declared dimension.

        Args:
            texts: Texts that were embedded.
            vectors: Raw output of :meth:`embed_batch` for ``texts``.

        Returns:
            float32 array of shape ``(len(texts), get_dimension())``.

        Raises:
            EmbeddingAPIError: On a count, shape or dimension mismatch, or non-finite values.

        Examples:
            >>> from mcpaggregator.services.embedding.providers import HashingProvider
            >>> HashingProvider(dimension=4).as_matrix(["a"], [[1, 0, 0, 0]]).dtype
            dtype('float32')
            >>> HashingProvider(dimension=4).as_matrix(["a", "b"], [[1, 0, 0, 0]])
            Traceback (most recent call last):
            ...
            mcpaggregator.services.embedding.providers.base.EmbeddingAPIError: feature-hashing-4 returned 1 vectors for 2 texts
            >>> HashingProvider(dimension=4).as_matrix(["a"], [[1, 0, 0]])
            Traceback (most recent call last):
            ...
            mcpaggregator.services.embedding.providers.base.EmbeddingAPIError: feature-hashing-4 returned 3-dimensional vectors, expected 4
        """
        name = self.get_model_name()
        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise EmbeddingAPIError(f"{name} returned unusable vectors: {e}") from e
        if matrix.ndim != 2 or matrix.shape[0] != len(texts):
            raise EmbeddingAPIError(f"{name} returned {len(vectors)} vectors for {len(texts)} texts")
        if matrix.shape[1] != self.get_dimension():
            raise EmbeddingAPIError(f"{name} returned {matrix.shape[1]}-dimensional vectors, expected {self.get_dimension()}")
        if not np.isfinite(matrix).all():
            raise EmbeddingAPIError(f"{name} returned non-finite values")
        return matrix
