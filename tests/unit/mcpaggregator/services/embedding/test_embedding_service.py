# -*- coding: utf-8 -*-
"""Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the embedding service and its providers.
"""

# Third-Party
import httpx
import numpy as np
import pytest

# First-Party
from mcpaggregator.config import Settings
from mcpaggregator.services.embedding import (
    build_provider,
    EmbeddingAPIError,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingService,
    EmbeddingUnavailableError,
    EmptyTextError,
    HashingProvider,
    OpenAIProvider,
    TextTooLongError,
)
from mcpaggregator.services.embedding.embedding_service import MAX_TEXT_LENGTH, normalize


class CountingProvider(HashingProvider):
    """Hashing provider that records every batch it receives."""

    def __init__(self, dimension=64, max_batch=100):
        super().__init__(dimension=dimension)
        self.batches = []
        self.max_batch_size = max_batch

    async def embed_batch(self, texts):
        self.batches.append(list(texts))
        return await super().embed_batch(texts)


class TestHashingProvider:
    @pytest.mark.asyncio
    async def test_deterministic(self):
        provider = HashingProvider(dimension=128)

        assert await provider.embed("hello world") == await provider.embed("hello world")

    @pytest.mark.asyncio
    async def test_dimension(self):
        assert len(await HashingProvider(dimension=48).embed("hello")) == 48

    @pytest.mark.asyncio
    async def test_shared_words_are_closer(self):
        provider = HashingProvider()
        service = EmbeddingService(provider)
        query, near, far = await service.embed_batch(["list files", "List the files in a folder", "Translate text to French"])

        assert float(np.dot(query, near)) > float(np.dot(query, far))


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_vectors_are_unit_length(self):
        service = EmbeddingService(HashingProvider(dimension=64))

        vectors = await service.embed_batch(["weather forecast", "send message"])

        assert vectors.shape == (2, 64)
        assert np.allclose(np.linalg.norm(vectors, axis=1), 1.0, atol=1e-5)

    @pytest.mark.asyncio
    async def test_cache_serves_repeats(self):
        provider = CountingProvider()
        service = EmbeddingService(provider)

        await service.embed_batch(["a b c", "d e f"])
        await service.embed_batch(["a b c", "g h i"])

        assert provider.batches == [["a b c", "d e f"], ["g h i"]]
        assert service.cache_info() == {"size": 3, "hits": 1, "misses": 3}

    @pytest.mark.asyncio
    async def test_cache_is_bounded(self):
        service = EmbeddingService(CountingProvider(), cache_size=2)

        await service.embed_batch(["one", "two", "three"])

        assert service.cache_info()["size"] == 2

    @pytest.mark.asyncio
    async def test_cache_evicts_least_recently_used(self):
        provider = CountingProvider()
        service = EmbeddingService(provider, cache_size=2)

        await service.embed_batch(["one", "two"])
        await service.embed("one")
        await service.embed("three")
        provider.batches.clear()
        await service.embed_batch(["one", "two"])

        assert provider.batches == [["two"]]

    @pytest.mark.asyncio
    async def test_batches_respect_provider_limit(self):
        provider = CountingProvider(max_batch=2)
        service = EmbeddingService(provider, cache_size=0)

        vectors = await service.embed_batch(["t1", "t2", "t3", "t4", "t5"])

        assert [len(b) for b in provider.batches] == [2, 2, 1]
        assert vectors.shape[0] == 5

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self):
        with pytest.raises(EmptyTextError):
            await EmbeddingService(HashingProvider()).embed("   ")

    @pytest.mark.asyncio
    async def test_long_text_rejected(self):
        with pytest.raises(TextTooLongError):
            await EmbeddingService(HashingProvider()).embed("x" * (MAX_TEXT_LENGTH + 1))

    @pytest.mark.asyncio
    async def test_unavailable_provider_fails_initialize(self):
        service = EmbeddingService(OpenAIProvider(api_key=""))

        with pytest.raises(EmbeddingProviderError):
            await service.initialize()

    @pytest.mark.asyncio
    async def test_unavailable_provider_reports_reason(self):
        service = EmbeddingService(OpenAIProvider(api_key=""))

        with pytest.raises(EmbeddingUnavailableError, match="no API key configured"):
            await service.initialize()

    @pytest.mark.asyncio
    async def test_wrong_dimension_from_provider_is_rejected(self):
        class ShortProvider(HashingProvider):
            async def embed_batch(self, texts):
                return [[1.0, 0.0] for _ in texts]

        with pytest.raises(EmbeddingAPIError, match="2-dimensional vectors, expected 64"):
            await EmbeddingService(ShortProvider(dimension=64)).embed("hello")

    @pytest.mark.asyncio
    async def test_missing_vectors_from_provider_are_rejected(self):
        class DroppingProvider(HashingProvider):
            async def embed_batch(self, texts):
                return (await super().embed_batch(texts))[:-1]

        with pytest.raises(EmbeddingAPIError, match="1 vectors for 2 texts"):
            await EmbeddingService(DroppingProvider(dimension=8)).embed_batch(["a b", "c d"])

    @pytest.mark.asyncio
    async def test_non_finite_vectors_are_rejected(self):
        class NanProvider(HashingProvider):
            async def embed_batch(self, texts):
                return [[float("nan")] * 8 for _ in texts]

        with pytest.raises(EmbeddingAPIError, match="non-finite"):
            await EmbeddingService(NanProvider(dimension=8)).embed("hello")

    def test_normalize_keeps_zero_rows(self):
        result = normalize(np.array([[3.0, 4.0], [0.0, 0.0]]))

        assert np.allclose(result, [[0.6, 0.8], [0.0, 0.0]])
        assert result.dtype == np.float32


class TestBuildProvider:
    def test_hashing_is_default(self):
        provider = build_provider(Settings(_env_file=None))

        assert isinstance(provider, HashingProvider)

    def test_openai_requires_key(self):
        with pytest.raises(EmbeddingProviderError):
            build_provider(Settings(_env_file=None, embedding_provider="openai"))

    def test_openai_with_key(self):
        provider = build_provider(Settings(_env_file=None, embedding_provider="openai", embedding_api_key="sk-test", embedding_model="text-embedding-3-large"))

        assert provider.get_model_name() == "text-embedding-3-large"
        assert provider.get_dimension() == 3072


def _openai_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_embed_batch_orders_by_index(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]})

        provider = OpenAIProvider(api_key="sk-test", dimension=2, client=_openai_client(handler))

        vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert seen["url"] == "https://api.openai.com/v1/embeddings"
        assert seen["auth"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        provider = OpenAIProvider(api_key="sk-test", client=_openai_client(lambda request: httpx.Response(429)))

        with pytest.raises(EmbeddingRateLimitError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_api_error(self):
        provider = OpenAIProvider(api_key="sk-test", client=_openai_client(lambda request: httpx.Response(500, text="boom")))

        with pytest.raises(EmbeddingAPIError, match="500"):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        provider = OpenAIProvider(api_key="sk-test", client=_openai_client(lambda request: httpx.Response(200, json={"unexpected": True})))

        with pytest.raises(EmbeddingAPIError, match="Malformed"):
            await provider.embed("hello")
