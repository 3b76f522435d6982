# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Embedding Services Package.
Provides embedding generation functionality with pluggable providers.
"""

from mcpaggregator.services.embedding.embedding_service import build_provider, EmbeddingService, EmptyTextError, get_embedding_service, TextTooLongError
from mcpaggregator.services.embedding.providers import (
    EmbeddingAPIError,
    EmbeddingProvider,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingUnavailableError,
    HashingProvider,
    OpenAIProvider,
    SentenceTransformerProvider,
)

__all__ = [
    "build_provider",
    "EmbeddingAPIError",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingRateLimitError",
    "EmbeddingUnavailableError",
    "EmbeddingService",
    "EmptyTextError",
    "get_embedding_service",
    "HashingProvider",
    "OpenAIProvider",
    "SentenceTransformerProvider",
    "TextTooLongError",
]
