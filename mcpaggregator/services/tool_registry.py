# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/tool_registry.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tool Registry.

The registry is the single source of truth for which servers and tools
exist. Registering a server lists its live tools, derives display names and
reconciles them with the metadata store:

1. Records of tools the server no longer advertises are deleted.
2. A tool without a record is inserted (``is_original_schema`` is true iff
   the live tool has an output schema).
3. A tool with a record and a live output schema overwrites the stored
   schema and marks it original.
4. A tool with a record but no live output schema has the stored schema
   copied onto its descriptor; the store is left untouched.

After all servers are registered, records of servers that are no longer
registered are deleted. Store failures never prevent a server from being
served from memory.
"""

# Standard
import asyncio
from collections import defaultdict
import logging
from typing import Any, Dict, Iterable, List, Optional

# Third-Party
import orjson

# First-Party
from mcpaggregator.config import ServerConnectionConfig
from mcpaggregator.errors import DisplayNameCollisionError, InvalidPathError, PersistenceError, RegistrationError
from mcpaggregator.models import ServerInfo, to_display_name, ToolDescriptor
from mcpaggregator.services.connection_manager import ConnectionManager, ServerConnection
from mcpaggregator.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


def _serialize_schema(schema: Optional[Dict[str, Any]]) -> Optional[str]:
    """Serialize a JSON schema for storage.

    Args:
        schema: Schema dict or ``None``.

    Returns:
        JSON text, or ``None``.

    Examples:
        >>> _serialize_schema({"type": "object"})
        '{"type":"object"}'
        >>> _serialize_schema(None) is None
        True
    """
    if schema is None:
        return None
    return orjson.dumps(schema).decode()


def build_descriptors(server_name: str, tools: Iterable[Any]) -> List[ToolDescriptor]:
    """Turn advertised ``mcp.types.Tool`` objects into descriptors.

    Args:
        server_name: Owning server.
        tools: Advertised tools.

    Returns:
        One descriptor per tool, in advertised order.

    Raises:
        DisplayNameCollisionError: If two raw names map to the same display name.

    Examples:
        >>> from mcp.types import Tool
        >>> ds = build_descriptors("chat", [Tool(name="send-message", inputSchema={"type": "object"})])
        >>> ds[0].display_name, ds[0].description
        ('send_message', '')
        >>> build_descriptors("chat", [Tool(name="a-b", inputSchema={}), Tool(name="a_b", inputSchema={})])
        Traceback (most recent call last):
        ...
        mcpaggregator.errors.DisplayNameCollisionError: Server 'chat' has colliding tool display names: a_b <- a-b, a_b
    """
    descriptors: List[ToolDescriptor] = []
    by_display: Dict[str, List[str]] = defaultdict(list)
    for tool in tools:
        raw_name = tool.name
        by_display[to_display_name(raw_name)].append(raw_name)
        descriptors.append(
            ToolDescriptor(
                server_name=server_name,
                raw_name=raw_name,
                input_schema=getattr(tool, "inputSchema", None) or {"type": "object", "properties": {}},
                output_schema=getattr(tool, "outputSchema", None),
                description=getattr(tool, "description", None) or "",
            )
        )

    collisions = {display: raws for display, raws in by_display.items() if len(raws) > 1}
    if collisions:
        raise DisplayNameCollisionError(server_name, collisions)
    return descriptors


class ToolRegistry:
    """Authoritative in-memory map of registered servers and their tools."""

    def __init__(self, connection_manager: ConnectionManager, store: MetadataStore):
        """Create the registry.

        Args:
            connection_manager: Source of live sessions.
            store: Metadata store shared with the rest of the process.
        """
        self.connection_manager = connection_manager
        self.store = store
        self._servers: Dict[str, ServerInfo] = {}
        self._lock = asyncio.Lock()

    async def create_connections(self, configs: List[ServerConnectionConfig]) -> Dict[str, ServerConnection]:
        """Open all connections concurrently. Failures are logged and isolated.

        Args:
            configs: Child server configs.

        Returns:
            Successfully opened connections by server name.
        """
        results = await asyncio.gather(*(self.connection_manager.create_connection(c) for c in configs), return_exceptions=True)
        opened: Dict[str, ServerConnection] = {}
        for config, result in zip(configs, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to connect to server {config.name}: {result}")
                continue
            opened[config.name] = result
        logger.info(f"Connected to {len(opened)}/{len(configs)} MCP servers")
        return opened

    async def register_server(self, name: str) -> ServerInfo:
        """List, reconcile and register one server.

        Args:
            name: Server name.

        Returns:
            The registered server.

        Raises:
            RegistrationError: If already registered, not connected, its tools cannot be listed, or display names collide.
        """
        if name in self._servers:
            raise RegistrationError(f"Server '{name}' is already registered")
        connection = self.connection_manager.get_connection(name)
        if connection is None:
            raise RegistrationError(f"No connection for server '{name}'")

        try:
            tools = await connection.list_tools()
        except Exception as e:
            raise RegistrationError(f"Failed to list tools of server '{name}': {e}") from e

        descriptors = build_descriptors(name, tools)
        self._sync_with_store(name, descriptors)

        info = ServerInfo(name=name, connection=connection, tools=descriptors)
        async with self._lock:
            if name in self._servers:
                raise RegistrationError(f"Server '{name}' is already registered")
            self._servers[name] = info
        logger.info(f"Registered server {name} with {len(descriptors)} tools")
        return info

    def _sync_with_store(self, server_name: str, descriptors: List[ToolDescriptor]) -> None:
        try:
            stored = {r.tool_name: r for r in self.store.get_server_tools(server_name)}
        except PersistenceError as e:
            logger.warning(f"Skipping metadata sync for {server_name}: {e}")
            return

        advertised = {d.raw_name for d in descriptors}
        for tool_name in sorted(set(stored) - advertised):
            try:
                self.store.delete_tool(server_name, tool_name)
                logger.debug(f"Removed stale metadata for {server_name}/{tool_name}")
            except PersistenceError as e:
                logger.warning(f"Failed to remove stale metadata for {server_name}/{tool_name}: {e}")

        for descriptor in descriptors:
            record = stored.get(descriptor.raw_name)
            try:
                if record is None:
                    self.store.save_tool(server_name, descriptor.raw_name, _serialize_schema(descriptor.output_schema), descriptor.output_schema is not None)
                elif descriptor.output_schema is not None:
                    self.store.update_tool(server_name, descriptor.raw_name, _serialize_schema(descriptor.output_schema), True)
                elif record.output_schema:
                    descriptor.output_schema = orjson.loads(record.output_schema)
            except PersistenceError as e:
                logger.warning(f"Failed to sync metadata for {server_name}/{descriptor.raw_name}: {e}")
            except orjson.JSONDecodeError as e:
                logger.warning(f"Ignoring unreadable stored schema for {server_name}/{descriptor.raw_name}: {e}")

    async def register_all_servers(self) -> List[ServerInfo]:
        """Register every connected server, then clean up orphaned store records.

        Returns:
            The servers registered by this call.
        """
        names = [n for n in self.connection_manager.get_all_connections() if n not in self._servers]
        results = await asyncio.gather(*(self.register_server(n) for n in names), return_exceptions=True)
        registered: List[ServerInfo] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to register server {name}: {result}")
                continue
            registered.append(result)
        self.cleanup_orphan_servers()
        return registered

    def cleanup_orphan_servers(self) -> List[str]:
        """Delete store records of servers that are not registered.

        Returns:
            Names of the servers whose records were removed.
        """
        try:
            orphans = [n for n in self.store.get_all_server_names() if n not in self._servers]
        except PersistenceError as e:
            logger.warning(f"Skipping orphan server cleanup: {e}")
            return []

        removed: List[str] = []
        for name in orphans:
            try:
                count = self.store.delete_server_tools(name)
                removed.append(name)
                logger.info(f"Removed {count} metadata records of unregistered server {name}")
            except PersistenceError as e:
                logger.warning(f"Failed to remove metadata of unregistered server {name}: {e}")
        return removed

    async def unregister_server(self, name: str) -> Optional[ServerInfo]:
        """Drop a server from the in-memory map. Store records are left for the next cleanup.

        Args:
            name: Server name.

        Returns:
            The removed server, if it was registered.
        """
        async with self._lock:
            return self._servers.pop(name, None)

    def get_server(self, name: str) -> Optional[ServerInfo]:
        """Look up a registered server."""
        return self._servers.get(name)

    def get_client(self, name: str) -> Optional[ServerConnection]:
        """Connection of a registered server."""
        info = self._servers.get(name)
        return info.connection if info else None

    def get_all_servers(self) -> Dict[str, ServerInfo]:
        """Copy of the name -> server map."""
        return dict(self._servers)

    def get_tool(self, server_name: str, tool_name: str) -> Optional[ToolDescriptor]:
        """Find a tool by raw or display name.

        Args:
            server_name: Server name.
            tool_name: Raw or display tool name.

        Returns:
            The descriptor, or ``None`` for an unknown tool.

        Raises:
            InvalidPathError: If the server is not registered.
        """
        info = self._servers.get(server_name)
        if info is None:
            raise InvalidPathError(f"Server '{server_name}' not found")
        for descriptor in info.tools:
            if tool_name in (descriptor.raw_name, descriptor.display_name):
                return descriptor
        return None

    def get_total_tool_count(self) -> int:
        """Number of tools across all registered servers."""
        return sum(len(info.tools) for info in self._servers.values())
