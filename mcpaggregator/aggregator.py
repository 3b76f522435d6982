# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/aggregator.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Aggregator.

Wires the connection manager, tool registry, metadata store, semantic index
and sandbox executor together and runs the startup sequence:

1. initialize the metadata store (a failure is logged; serving continues
   from memory),
2. open every child connection in parallel,
3. register every connected server, reconciling tools with the store,
4. rebuild the semantic index,
5. rebuild the sandbox bindings.

The facade operations used by the meta-server live here as well.

Examples:
    >>> from mcpaggregator.config import Settings
    >>> agg = Aggregator(Settings(database_url="sqlite://"), server_configs=[])
    >>> agg.started
    False
"""

# Standard
import logging
from typing import Any, Dict, List, Optional, Sequence

# First-Party
from mcpaggregator.config import ServerConnectionConfig, Settings, settings
from mcpaggregator.errors import AggregatorError, InvalidPathError, PersistenceError, SandboxExecutionError
from mcpaggregator.services.connection_manager import ConnectionManager
from mcpaggregator.services.embedding.embedding_service import build_provider, EmbeddingService
from mcpaggregator.services.metadata_store import MetadataStore
from mcpaggregator.services.sandbox_executor import build_runtime, SandboxExecutor
from mcpaggregator.services.semantic_index import SemanticIndex
from mcpaggregator.services.tool_registry import ToolRegistry
from mcpaggregator.services.tools_overview import ToolsOverviewService

logger = logging.getLogger(__name__)


class Aggregator:
    """Owns every component of one aggregator process."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        server_configs: Optional[Sequence[ServerConnectionConfig]] = None,
        store: Optional[MetadataStore] = None,
        connection_manager: Optional[ConnectionManager] = None,
        registry: Optional[ToolRegistry] = None,
        semantic_index: Optional[SemanticIndex] = None,
        sandbox: Optional[SandboxExecutor] = None,
        overview: Optional[ToolsOverviewService] = None,
    ):
        """Build the component graph. Nothing is started here.

        Args:
            cfg: Settings, defaults to the module-level ``settings``.
            server_configs: Child servers to connect to.
            store: Metadata store, built from ``cfg.database_url`` when omitted.
            connection_manager: Connection manager, built from ``cfg`` when omitted.
            registry: Tool registry, built from the manager and store when omitted.
            semantic_index: Semantic index, built from ``cfg`` when omitted.
            sandbox: Sandbox executor, built from ``cfg`` when omitted.
            overview: Overview renderer.
        """
        self.settings = cfg or settings
        self.server_configs: List[ServerConnectionConfig] = list(server_configs or [])
        self.store = store or MetadataStore(self.settings.database_url)
        self.connection_manager = connection_manager or ConnectionManager(timeout=self.settings.connection_timeout_seconds)
        self.registry = registry or ToolRegistry(self.connection_manager, self.store)
        self.semantic_index = semantic_index or SemanticIndex(EmbeddingService(build_provider(self.settings), cache_size=self.settings.embedding_cache_size))
        self.sandbox = sandbox or SandboxExecutor(
            runtime=build_runtime(self.settings.sandbox_runtime, self.settings),
            timeout=self.settings.sandbox_timeout_seconds,
            tool_call_timeout=self.settings.tool_call_timeout_seconds,
        )
        self.overview = overview or ToolsOverviewService()
        self.started = False

    async def start(self) -> None:
        """Run the startup sequence. Per-server and per-component failures are logged, never raised."""
        try:
            self.store.initialize()
        except PersistenceError as e:
            logger.error(f"Metadata store unavailable, continuing without it: {e}")

        await self.registry.create_connections(self.server_configs)
        await self.registry.register_all_servers()
        servers = self.registry.get_all_servers()

        try:
            await self.semantic_index.initialize()
            await self.semantic_index.index_tools(servers)
        except AggregatorError as e:
            logger.error(f"Semantic index unavailable: {e}")
        except Exception as e:
            logger.exception(f"Failed to build semantic index: {e}")

        self.sandbox.initialize(servers)

        if self.store.initialized:
            try:
                stats = self.store.get_stats()
                logger.info(f"Metadata store holds {stats.total_tools} tools")
            except PersistenceError as e:
                logger.warning(f"Could not read metadata store stats: {e}")

        self.started = True
        logger.info(f"Aggregator started with {len(servers)} MCP servers and {self.registry.get_total_tool_count()} tools")

    def list_overview(self) -> str:
        """Listing of every registered server and tool path."""
        return self.overview.list_overview(self.registry.get_all_servers())

    def get_tool_details(self, paths: Sequence[str]) -> List[Dict[str, Any]]:
        """Detail records for ``server/tool`` paths.

        Raises:
            InvalidPathError: On a malformed path or an unknown server.
        """
        return self.overview.get_tool_details(self.registry.get_all_servers(), paths)

    async def semantic_search(self, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rank registered tools against a natural language query.

        Args:
            query: What the caller wants to do.
            limit: Maximum results, clamped to ``[1, search_max_limit]``.

        Returns:
            ``{serverName, toolName, description, score, fullPath}`` records, best first.

        Raises:
            IndexNotInitializedError: Before the index is initialized.
            ValidationError: On a blank query.
        """
        if limit is None:
            limit = self.settings.search_default_limit
        limit = max(1, min(int(limit), self.settings.search_max_limit))
        results = await self.semantic_index.search(query, top_k=limit)
        return [
            {
                "serverName": r.server_name,
                "toolName": r.tool_name,
                "description": r.description,
                "score": round(r.score, 3),
                "fullPath": r.tool.path,
            }
            for r in results
        ]

    async def run_composed_code(self, code: str) -> Any:
        """Run composition code against the tool bindings.

        Returns:
            The JSON-ready result, or the error payload of a failed run.
        """
        outcome = await self.sandbox.execute_safe(code)
        if isinstance(outcome, SandboxExecutionError):
            return outcome.to_dict()
        return outcome

    async def reindex_server(self, name: str) -> int:
        """Re-embed the tools of one registered server.

        Returns:
            Number of entries indexed.

        Raises:
            InvalidPathError: If the server is not registered.
        """
        info = self.registry.get_server(name)
        if info is None:
            raise InvalidPathError(f"Server '{name}' not found")
        return await self.semantic_index.reindex_server(name, info)

    def get_stats(self) -> Dict[str, Any]:
        """Counters across every component."""
        stats: Dict[str, Any] = {
            "servers": len(self.registry.get_all_servers()),
            "tools": self.registry.get_total_tool_count(),
            "indexed_tools": self.semantic_index.get_stats()["total_tools"],
            "bindings": len(self.sandbox.get_binding_paths()),
            "stored_tools": None,
        }
        if self.store.initialized:
            try:
                stats["stored_tools"] = self.store.get_stats().total_tools
            except PersistenceError as e:
                logger.warning(f"Could not read metadata store stats: {e}")
        return stats

    async def shutdown(self) -> None:
        """Close connections, the index and the store."""
        await self.connection_manager.close_all()
        try:
            await self.semantic_index.close()
        except Exception as e:
            logger.warning(f"Error closing semantic index: {e}")
        self.store.close()
        self.started = False
        logger.info("Aggregator stopped")
