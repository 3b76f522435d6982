# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/meta_server/service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Meta-Server Service.

Exposes the aggregator to MCP clients as four meta-tools instead of the
underlying tools:

- ``get_mcps_servers_overview``: server/tool listing (also embedded in the
  tool's own description)
- ``get_tools_overview``: schemas and example usage for selected tools
- ``semantic_search_tools``: natural language tool discovery
- ``run_functions_code``: composition code against every tool

Every call returns text. Invalid arguments give ``"Error: <message>"``,
unknown tools give ``"Tool '<name>' not found"`` and failures of the
underlying operations are rendered as text as well, so nothing raises across
the MCP boundary.

Examples:
    >>> from unittest.mock import MagicMock
    >>> service = MetaServerService(MagicMock(**{"list_overview.return_value": "weather/get_forecast"}))
    >>> [t["name"] for t in service.get_meta_tool_definitions()]
    ['semantic_search_tools', 'get_tools_overview', 'run_functions_code', 'get_mcps_servers_overview']
"""

# Standard
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

# Third-Party
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
import mcp.types as types
import orjson

# First-Party
from mcpaggregator.aggregator import Aggregator
from mcpaggregator.errors import AggregatorError, ValidationError
from mcpaggregator.meta_server.schemas import (
    GetToolsOverviewRequest,
    META_TOOL_DEFINITIONS,
    parse_arguments,
    RUN_CODE_TOOL,
    RunFunctionsCodeRequest,
    SEMANTIC_SEARCH_TOOL,
    SemanticSearchRequest,
    SERVERS_OVERVIEW_TOOL,
    servers_overview_tool_definition,
    TOOLS_OVERVIEW_TOOL,
)
from mcpaggregator.services.tools_overview import TOOLS_OVERVIEW_NOTE

logger = logging.getLogger(__name__)

Handler = Callable[[Optional[Dict[str, Any]]], Awaitable[str]]

SERVER_INSTRUCTIONS = (
    "This server aggregates several MCP servers. Discover tools with get_mcps_servers_overview or semantic_search_tools, "
    "read their schemas with get_tools_overview, then call them from run_functions_code."
)


def to_json_text(value: Any) -> str:
    """Pretty JSON text for a tool result.

    Examples:
        >>> print(to_json_text({"a": [1]}))
        {
          "a": [
            1
          ]
        }
    """
    return orjson.dumps(value, default=str, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS).decode()


class MetaServerService:
    """Routes meta-tool calls to the aggregator and serves them over MCP."""

    def __init__(self, aggregator: Aggregator):
        """Create the service.

        Args:
            aggregator: Started (or to-be-started) aggregator.
        """
        self.aggregator = aggregator
        self._handlers: Dict[str, Handler] = {
            SERVERS_OVERVIEW_TOOL: self._handle_servers_overview,
            TOOLS_OVERVIEW_TOOL: self._handle_tools_overview,
            SEMANTIC_SEARCH_TOOL: self._handle_semantic_search,
            RUN_CODE_TOOL: self._handle_run_code,
        }

    def get_meta_tool_definitions(self) -> List[Dict[str, Any]]:
        """Advertised meta-tools, the servers overview last.

        Returns:
            Definition dicts with ``name``, ``description`` and ``inputSchema``.
        """
        definitions = [{"name": name, "description": defn["description"], "inputSchema": defn["input_schema"]} for name, defn in META_TOOL_DEFINITIONS.items()]
        definitions.append(servers_overview_tool_definition(self.aggregator.list_overview()))
        return definitions

    async def handle_meta_tool_call(self, name: str, arguments: Optional[Dict[str, Any]]) -> str:
        """Run one meta-tool call.

        Args:
            name: Meta-tool name.
            arguments: Call arguments as received.

        Returns:
            Text payload for the caller.
        """
        handler = self._handlers.get(name)
        if handler is None:
            return f"Tool '{name}' not found"
        try:
            return await handler(arguments)
        except ValidationError as e:
            return f"Error: {e}"
        except AggregatorError as e:
            logger.warning(f"Meta-tool {name} failed: {e}")
            return f"Error: {e}"
        except Exception as e:
            logger.exception(f"Unexpected error in meta-tool {name}")
            return f"Error: {type(e).__name__}: {e}"

    async def _handle_servers_overview(self, arguments: Optional[Dict[str, Any]]) -> str:  # pylint: disable=unused-argument
        return self.aggregator.list_overview()

    async def _handle_tools_overview(self, arguments: Optional[Dict[str, Any]]) -> str:
        request = parse_arguments(TOOLS_OVERVIEW_TOOL, GetToolsOverviewRequest, arguments)
        details = self.aggregator.get_tool_details(request.tool_paths)
        return to_json_text(details) + "\n\n " + TOOLS_OVERVIEW_NOTE

    async def _handle_semantic_search(self, arguments: Optional[Dict[str, Any]]) -> str:
        request = parse_arguments(SEMANTIC_SEARCH_TOOL, SemanticSearchRequest, arguments)
        try:
            results = await self.aggregator.semantic_search(request.query, request.limit)
        except ValidationError:
            raise
        except AggregatorError as e:
            logger.warning(f"Semantic search failed: {e}")
            return f"Error searching tools: {e}"
        return to_json_text(results)

    async def _handle_run_code(self, arguments: Optional[Dict[str, Any]]) -> str:
        request = parse_arguments(RUN_CODE_TOOL, RunFunctionsCodeRequest, arguments)
        return to_json_text(await self.aggregator.run_composed_code(request.code))

    def build_server(self) -> Server:
        """Create the MCP server exposing the meta-tools.

        Returns:
            A low-level MCP server with ``tools/list`` and ``tools/call`` handlers.
        """
        server: Server = Server(self.aggregator.settings.app_name, version=self.aggregator.settings.app_version, instructions=SERVER_INSTRUCTIONS)

        @server.list_tools()
        async def _list_tools() -> List[types.Tool]:
            return [types.Tool(name=d["name"], description=d["description"], inputSchema=d["inputSchema"]) for d in self.get_meta_tool_definitions()]

        # Arguments are validated by the request models so callers get the short messages.
        @server.call_tool(validate_input=False)
        async def _call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
            text = await self.handle_meta_tool_call(name, arguments)
            return [types.TextContent(type="text", text=text)]

        return server

    async def run_stdio(self) -> None:
        """Serve the meta-tools over stdio until the client disconnects."""
        server = self.build_server()
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Meta-server listening on stdio")
            await server.run(read_stream, write_stream, server.create_initialization_options())
