# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/providers/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Embedding Providers Package.
Provides various embedding provider implementations.
"""

from mcpaggregator.services.embedding.providers.base import (
    EmbeddingAPIError,
    EmbeddingProvider,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingUnavailableError,
)
from mcpaggregator.services.embedding.providers.hashing import HashingProvider
from mcpaggregator.services.embedding.providers.openai import OpenAIProvider
from mcpaggregator.services.embedding.providers.sentence_transformers import SentenceTransformerProvider

__all__ = [
    "EmbeddingAPIError",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingRateLimitError",
    "EmbeddingUnavailableError",
    "HashingProvider",
    "OpenAIProvider",
    "SentenceTransformerProvider",
]
