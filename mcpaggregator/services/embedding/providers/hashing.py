# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/embedding/providers/hashing.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Feature-Hashing Embedding Provider.

A local, deterministic provider that needs no network access and no model
download. Text is lower-cased and split into word tokens; stop words are
dropped and the rest are reduced to crude stems. Each stem is hashed into one
of ``dimension`` buckets with a hash-derived sign, so texts that share words
end up with a high cosine similarity.

Examples:
    >>> import asyncio
    >>> import numpy as np
    >>> provider = HashingProvider(dimension=256)
    >>> q, a, b = asyncio.run(provider.embed_batch(["send a message", "Send a message to a channel", "Compute SHA-256 hash"]))
    >>> float(np.dot(q, a)) > float(np.dot(q, b))
    True
    >>> provider.get_model_name()
    'feature-hashing-256'
"""

# Standard
import hashlib
import re
from typing import List

# Third-Party
import numpy as np

# First-Party
from mcpaggregator.services.embedding.providers.base import EmbeddingProvider

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOP_WORDS = frozenset(
    {"a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "into", "is", "it", "its", "of", "on", "or", "that", "the", "this", "to", "with"}
)


def stem(token: str) -> str:
    """Reduce a token to a crude stem.

    Args:
        token: Lower-case word.

    Returns:
        The stem.

    Examples:
        >>> [stem(t) for t in ("messages", "message", "sending", "sends", "class")]
        ['messag', 'messag', 'send', 'send', 'class']
    """
    for suffix in ("ing", "ed"):
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            token = token[: -len(suffix)]
            break
    else:
        if token.endswith("s") and not token.endswith("ss") and len(token) > 3:
            token = token[:-1]
    if token.endswith("e") and len(token) > 3:
        token = token[:-1]
    return token


def features(text: str) -> List[str]:
    """Extract the hashed features of ``text``.

    Args:
        text: Input text.

    Returns:
        Stems of the non stop-word tokens, in order.

    Examples:
        >>> features("Send a message to the channel")
        ['send', 'messag', 'channel']
    """
    return [stem(t) for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS]


class HashingProvider(EmbeddingProvider):
    """Deterministic bag-of-stems provider.

    Args:
        dimension: Number of hash buckets. Defaults to 384.
    """

    max_batch_size = 10_000

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    def _vector(self, text: str) -> List[float]:
        vec = np.zeros(self._dimension, dtype=np.float32)
        for feature in features(text):
            digest = hashlib.md5(feature.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[bucket] += sign
        return vec.tolist()

    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Examples:
            >>> import asyncio
            >>> v = asyncio.run(HashingProvider(dimension=32).embed("weather forecast"))
            >>> len(v)
            32
            >>> asyncio.run(HashingProvider(dimension=32).embed("the of and")) == [0.0] * 32
            True
        """
        return self._vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(t) for t in texts]

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return f"feature-hashing-{self._dimension}"

