# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/connection_manager.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Connection Manager.

Owns exactly one MCP client session per configured child server. Each session
lives inside its own background task: the stdio transport is built on task
groups that must be entered and exited by the same task, so opening and
closing both happen there while callers only ever see the
:class:`ServerConnection` handle.

The transport is pluggable: a *connector* is an async callable
``(config, stack) -> (session, instructions)`` that enters whatever contexts
it needs on the given ``AsyncExitStack``. The default connector spawns the
server over stdio.

Examples:
    >>> import asyncio
    >>> from unittest.mock import AsyncMock
    >>> from mcpaggregator.config import ServerConnectionConfig
    >>> async def fake_connector(config, stack):
    ...     return AsyncMock(), f"{config.name} instructions"
    >>> async def demo():
    ...     manager = ConnectionManager(connector=fake_connector)
    ...     conn = await manager.create_connection(ServerConnectionConfig(name="echo", command="echo"))
    ...     count = manager.get_connection_count()
    ...     await manager.close_all()
    ...     return conn.instructions, count, conn.alive
    >>> asyncio.run(demo())
    ('echo instructions', 1, False)
"""

# Standard
import asyncio
from contextlib import AsyncExitStack
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

# Third-Party
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

# First-Party
from mcpaggregator.config import ServerConnectionConfig, settings
from mcpaggregator.errors import ConnectionError  # pylint: disable=redefined-builtin

logger = logging.getLogger(__name__)

Connector = Callable[[ServerConnectionConfig, AsyncExitStack], Awaitable[Tuple[Any, Optional[str]]]]


async def stdio_connector(config: ServerConnectionConfig, stack: AsyncExitStack) -> Tuple[ClientSession, Optional[str]]:
    """Spawn ``config.command`` and run the MCP ``initialize`` handshake over stdio.

    Args:
        config: Child server spawn parameters.
        stack: Exit stack that keeps the transport and session open.

    Returns:
        The initialized session and the server-supplied instructions.
    """
    params = StdioServerParameters(command=config.command, args=config.args, env=config.env or None, cwd=config.cwd or None)
    read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
    session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
    init_result = await session.initialize()
    return session, getattr(init_result, "instructions", None)


class ServerConnection:
    """Handle on one live child server session.

    Attributes:
        name: Server name.
        session: The MCP client session (anything exposing ``list_tools`` and ``call_tool``).
        instructions: Usage text returned by the server during ``initialize``.
        alive: ``False`` once the connection has been closed or its transport died.
    """

    def __init__(self, name: str):
        self.name = name
        self.session: Any = None
        self.instructions: Optional[str] = None
        self.alive = False
        self._closed = asyncio.Event()
        self._runner: Optional[asyncio.Task] = None

    async def _run(self, config: ServerConnectionConfig, connector: Connector, ready: asyncio.Future) -> None:
        try:
            async with AsyncExitStack() as stack:
                self.session, self.instructions = await connector(config, stack)
                self.alive = True
                ready.set_result(True)
                await self._closed.wait()
        except Exception as e:  # surfaced to create_connection or logged after startup
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning(f"Connection to {self.name} terminated: {e}")
        finally:
            self.alive = False

    async def open(self, config: ServerConnectionConfig, connector: Connector, timeout: float) -> None:
        """Start the background task and wait for the handshake.

        Args:
            config: Spawn parameters.
            connector: Transport factory.
            timeout: Seconds allowed for the handshake.

        Raises:
            ConnectionError: If the handshake fails or times out.
        """
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(self._run(config, connector, ready), name=f"mcp-connection-{self.name}")
        try:
            await asyncio.wait_for(asyncio.shield(ready), timeout=timeout)
        except asyncio.TimeoutError as e:
            self._runner.cancel()
            await self.close()
            raise ConnectionError(self.name, f"initialize timed out after {timeout}s") from e
        except Exception as e:
            await self.close()
            raise ConnectionError(self.name, str(e) or type(e).__name__) from e

    async def list_tools(self) -> List[Any]:
        """List the tools advertised by the server.

        Returns:
            The ``mcp.types.Tool`` objects.

        Raises:
            ConnectionError: If the connection is closed.
        """
        if not self.alive:
            raise ConnectionError(self.name, "connection is closed")
        result = await self.session.list_tools()
        return list(result.tools)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call a tool by its raw name.

        Args:
            name: Raw tool name on the child server.
            arguments: Argument mapping.

        Returns:
            The call result as a JSON-ready dict (``content``, ``structuredContent``, ``isError``).

        Raises:
            ConnectionError: If the connection is closed.
        """
        if not self.alive:
            raise ConnectionError(self.name, "connection is closed")
        result = await self.session.call_tool(name, arguments or {})
        if hasattr(result, "model_dump"):
            return result.model_dump(by_alias=True, exclude_none=True, mode="json")
        return result

    async def close(self) -> None:
        """Close the session and wait for the transport to shut down."""
        self._closed.set()
        if self._runner is not None:
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        self.alive = False


class ConnectionManager:
    """Registry of open :class:`ServerConnection` handles, keyed by server name."""

    def __init__(self, connector: Optional[Connector] = None, timeout: Optional[float] = None):
        """Create the manager.

        Args:
            connector: Transport factory, defaults to :func:`stdio_connector`.
            timeout: Handshake timeout, defaults to ``settings.connection_timeout_seconds``.
        """
        self._connector = connector or stdio_connector
        self._timeout = timeout if timeout is not None else settings.connection_timeout_seconds
        self._connections: Dict[str, ServerConnection] = {}

    async def create_connection(self, config: ServerConnectionConfig) -> ServerConnection:
        """Open a session for ``config``, reusing an existing one with the same name.

        Args:
            config: Spawn parameters.

        Returns:
            The open connection.

        Raises:
            ConnectionError: If the server cannot be reached.
        """
        existing = self._connections.get(config.name)
        if existing is not None:
            return existing

        connection = ServerConnection(config.name)
        logger.info(f"Connecting to MCP server {config.name} ({config.command} {' '.join(config.args)})")
        await connection.open(config, self._connector, self._timeout)
        self._connections[config.name] = connection
        logger.info(f"Connected to MCP server {config.name}")
        return connection

    def get_connection(self, name: str) -> Optional[ServerConnection]:
        """Look up a connection by server name."""
        return self._connections.get(name)

    def get_all_connections(self) -> Dict[str, ServerConnection]:
        """Return a copy of the name -> connection map."""
        return dict(self._connections)

    def get_connection_count(self) -> int:
        """Number of open connections."""
        return len(self._connections)

    async def close_connection(self, name: str) -> None:
        """Close and forget one connection.

        Args:
            name: Server name.
        """
        connection = self._connections.pop(name, None)
        if connection is not None:
            await connection.close()

    async def close_all(self) -> None:
        """Close every connection. Failures are logged, never raised."""
        connections = list(self._connections.values())
        self._connections.clear()
        results = await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
        for connection, result in zip(connections, results):
            if isinstance(result, BaseException):
                logger.warning(f"Error closing connection to {connection.name}: {result}")
