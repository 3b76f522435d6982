# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/providers/openai.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

OpenAI Embedding Provider.
This module provides an embedding provider using OpenAI's ``/embeddings``
endpoint (or any compatible endpoint) over httpx.
"""

# Standard
import logging
from typing import List, Optional

# Third-Party
import httpx

# First-Party
from mcpaggregator.services.embedding.providers.base import EmbeddingAPIError, EmbeddingProvider, EmbeddingRateLimitError

logger = logging.getLogger(__name__)


class OpenAIProvider(EmbeddingProvider):
    """Embedding provider using OpenAI's embedding API.

    Args:
        api_key: OpenAI API key for authentication.
        model: The embedding model to use. Defaults to "text-embedding-3-small".
        dimension: Optional dimension for models that support it.
        api_base: Base URL of the API.
        timeout: Request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport here).

    Examples:
        >>> provider = OpenAIProvider(api_key="test-key")
        >>> provider.get_model_name()
        'text-embedding-3-small'
        >>> provider.get_dimension()
        1536
        >>> OpenAIProvider(api_key="").unavailable_reason()
        'no API key configured'
    """

    DEFAULT_MODEL = "text-embedding-3-small"
    max_batch_size = 2048
    MODEL_DIMENSIONS = {
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        dimension: Optional[int] = None,
        api_base: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._model = model
        self._dimension = dimension or self.MODEL_DIMENSIONS.get(model, 1536)
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts`` with one API request.

        Args:
            texts: A list of input texts to embed.

        Returns:
            One embedding per input, in input order.

        Raises:
            EmbeddingRateLimitError: On HTTP 429.
            EmbeddingAPIError: On any other HTTP or transport failure, or a malformed response.
        """
        payload = {"model": self._model, "input": texts}
        if self._dimension != self.MODEL_DIMENSIONS.get(self._model):
            payload["dimensions"] = self._dimension
        try:
            response = await self._get_client().post(
                f"{self._api_base}/embeddings",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise EmbeddingAPIError(f"Embedding request failed: {e}") from e

        if response.status_code == 429:
            raise EmbeddingRateLimitError("Embedding API rate limit exceeded")
        if response.status_code >= 400:
            raise EmbeddingAPIError(f"Embedding API returned {response.status_code}: {response.text[:200]}")

        try:
            data = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingAPIError(f"Malformed embedding response: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingAPIError(f"Embedding API returned {len(vectors)} vectors for {len(texts)} inputs")
        return vectors

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def unavailable_reason(self) -> Optional[str]:
        return None if self._api_key else "no API key configured"

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
