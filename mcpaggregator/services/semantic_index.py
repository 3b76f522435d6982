# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/semantic_index.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Semantic Index for tool discovery.

Tool descriptions (or the raw tool name when a tool has none) are embedded
into unit vectors and kept in an in-memory :class:`VectorIndex`. Queries are
embedded the same way and ranked by cosine similarity, which for unit vectors
is a dot product, clamped to ``[0, 1]``.

A full rebuild (``index_tools``) is the normal path. ``reindex_server``
replaces a single server's entries under a per-server lock.
"""

# Standard
import asyncio
from dataclasses import dataclass
import logging
from typing import Dict, Iterable, List, Optional

# Third-Party
import numpy as np

# First-Party
from mcpaggregator.errors import IndexNotInitializedError, ValidationError
from mcpaggregator.models import SearchResult, ServerInfo, ToolDescriptor
from mcpaggregator.services.embedding.embedding_service import EmbeddingService, get_embedding_service, MAX_TEXT_LENGTH

logger = logging.getLogger(__name__)


@dataclass
class IndexEntry:
    """One indexed tool.

    Attributes:
        id: ``server/raw_name``.
        vector: Unit embedding vector.
        tool: Descriptor the entry was built from.
    """

    id: str
    vector: np.ndarray
    tool: ToolDescriptor

    @property
    def server_name(self) -> str:
        return self.tool.server_name


def index_text(tool: ToolDescriptor) -> str:
    """Text embedded for ``tool``: its description, else its raw name.

    Examples:
        >>> index_text(ToolDescriptor(server_name="s", raw_name="get-weather"))
        'get-weather'
        >>> index_text(ToolDescriptor(server_name="s", raw_name="x", description="Get the weather"))
        'Get the weather'
    """
    text = tool.description.strip() or tool.raw_name
    return text[:MAX_TEXT_LENGTH]


def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of unit ``query`` against unit rows of ``matrix``, clamped to [0, 1].

    Examples:
        >>> m = np.array([[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0]], dtype=np.float32)
        >>> cosine_scores(m, np.array([1.0, 0.0], dtype=np.float32)).tolist()
        [1.0, 0.0, 0.0]
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    return np.clip(matrix @ query, 0.0, 1.0)


class VectorIndex:
    """In-memory store of :class:`IndexEntry` keyed by id."""

    def __init__(self) -> None:
        self._entries: Dict[str, IndexEntry] = {}
        self._matrix: Optional[np.ndarray] = None
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._entries)

    def upsert(self, entries: Iterable[IndexEntry]) -> None:
        """Insert or replace entries."""
        for entry in entries:
            self._entries[entry.id] = entry
        self._matrix = None

    def delete_where_server(self, server_name: str) -> int:
        """Remove every entry of one server.

        Returns:
            Number of entries removed.
        """
        ids = [i for i, e in self._entries.items() if e.server_name == server_name]
        for entry_id in ids:
            del self._entries[entry_id]
        if ids:
            self._matrix = None
        return len(ids)

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()
        self._matrix = None

    def query(self, vector: np.ndarray, top_k: int, threshold: Optional[float] = None) -> List[tuple]:
        """Rank entries against ``vector``.

        Args:
            vector: Unit query vector.
            top_k: Maximum number of hits.
            threshold: Optional minimum score.

        Returns:
            ``(score, entry)`` pairs, best first.
        """
        if not self._entries:
            return []
        if self._matrix is None:
            self._order = list(self._entries)
            self._matrix = np.stack([self._entries[i].vector for i in self._order])
        scores = cosine_scores(self._matrix, vector)
        ranked = np.argsort(-scores, kind="stable")
        hits = []
        for idx in ranked[:top_k]:
            score = float(scores[idx])
            if threshold is not None and score < threshold:
                break
            hits.append((score, self._entries[self._order[idx]]))
        return hits


class SemanticIndex:
    """Embeds tools and answers nearest-neighbour queries."""

    def __init__(self, embedding_service: Optional[EmbeddingService] = None):
        """Create the index.

        Args:
            embedding_service: Embedding front end, defaults to the process-wide service.
        """
        self.embedding_service = embedding_service or get_embedding_service()
        self._index: Optional[VectorIndex] = None
        self._rebuild_lock = asyncio.Lock()
        self._server_locks: Dict[str, asyncio.Lock] = {}

    @property
    def initialized(self) -> bool:
        """Whether ``initialize`` has completed."""
        return self._index is not None

    async def initialize(self) -> None:
        """Initialize the embedding service and an empty index. Idempotent."""
        if self._index is not None:
            return
        await self.embedding_service.initialize()
        self._index = VectorIndex()
        logger.info("Semantic index initialized")

    def _require_index(self) -> VectorIndex:
        if self._index is None:
            raise IndexNotInitializedError("Semantic index is not initialized")
        return self._index

    async def _embed_entries(self, tools: List[ToolDescriptor]) -> List[IndexEntry]:
        if not tools:
            return []
        vectors = await self.embedding_service.embed_batch([index_text(t) for t in tools])
        return [IndexEntry(id=f"{t.server_name}/{t.raw_name}", vector=v, tool=t) for t, v in zip(tools, vectors)]

    async def index_tools(self, servers: Dict[str, ServerInfo]) -> int:
        """Rebuild the index from every server's tools.

        Args:
            servers: Registered servers by name.

        Returns:
            Number of indexed tools.

        Raises:
            IndexNotInitializedError: Before ``initialize``.
        """
        index = self._require_index()
        tools = [tool for info in servers.values() for tool in info.tools]
        async with self._rebuild_lock:
            entries = await self._embed_entries(tools)
            index.clear()
            index.upsert(entries)
        logger.info(f"Indexed {len(entries)} tools from {len(servers)} servers")
        return len(entries)

    async def reindex_server(self, server_name: str, info: ServerInfo) -> int:
        """Replace the entries of one server.

        Args:
            server_name: Server whose entries are replaced.
            info: Its current registration.

        Returns:
            Number of entries indexed for the server.
        """
        index = self._require_index()
        lock = self._server_locks.setdefault(server_name, asyncio.Lock())
        async with lock:
            entries = await self._embed_entries(list(info.tools))
            index.delete_where_server(server_name)
            index.upsert(entries)
        logger.info(f"Reindexed {len(entries)} tools of server {server_name}")
        return len(entries)

    def remove_server(self, server_name: str) -> int:
        """Delete the entries of one server.

        Returns:
            Number of entries removed.
        """
        return self._require_index().delete_where_server(server_name)

    async def search(self, query: str, top_k: int = 5, threshold: Optional[float] = None) -> List[SearchResult]:
        """Find the tools closest to ``query``.

        Args:
            query: Natural language query.
            top_k: Maximum number of results.
            threshold: Optional minimum score in [0, 1].

        Returns:
            Results in descending score order.

        Raises:
            IndexNotInitializedError: Before ``initialize``.
            ValidationError: If the query is blank or ``top_k`` is not positive.
        """
        index = self._require_index()
        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")
        if top_k < 1:
            raise ValidationError("top_k must be at least 1")
        if len(index) == 0:
            return []
        vector = await self.embedding_service.embed(query.strip()[:MAX_TEXT_LENGTH])
        return [
            SearchResult(server_name=e.tool.server_name, tool_name=e.tool.raw_name, description=e.tool.description, score=score, tool=e.tool)
            for score, e in index.query(vector, top_k, threshold)
        ]

    def get_stats(self) -> Dict[str, int]:
        """Index statistics."""
        return {"total_tools": len(self._index) if self._index is not None else 0}

    async def close(self) -> None:
        """Drop the index and close the embedding service."""
        self._index = None
        await self.embedding_service.close()
