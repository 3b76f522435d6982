# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/tools_overview.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tools Overview Service.

Renders the catalogue views handed to callers of the meta-server: a sorted
``server/tool`` listing with each server's instructions, and detailed records
for selected tool paths including an example of calling the tool from
composition code.

Examples:
    >>> from unittest.mock import MagicMock
    >>> from mcpaggregator.models import ServerInfo, ToolDescriptor
    >>> conn = MagicMock(instructions="Use metric units.")
    >>> servers = {"weather": ServerInfo("weather", conn, [ToolDescriptor(server_name="weather", raw_name="get-forecast")])}
    >>> print(ToolsOverviewService().list_overview(servers).splitlines()[0])
    # weather mcp server instructions: Use metric units.
    >>> ToolsOverviewService().get_tool_details(servers, ["weather/get_forecast"])[0]["name"]
    'get_forecast'
"""

# Standard
import logging
from typing import Any, Dict, List, Sequence

# First-Party
from mcpaggregator.errors import InvalidPathError
from mcpaggregator.models import ServerInfo, ToolDescriptor

logger = logging.getLogger(__name__)

SERVERS_OVERVIEW_NOTE = """
Note: If you want to use any tools from the list, first find out how to use them with the "get_tools_overview" tool.
"""

TOOLS_OVERVIEW_NOTE = """
Note:
 - To execute tools use the "run_functions_code" tool.
 - Write one piece of code that calls every tool you need, especially when the output of tool_a is the input of tool_b.
"""


def split_tool_path(path: str) -> List[str]:
    """Split ``server/tool`` into its two parts.

    Args:
        path: Tool path.

    Returns:
        ``[server, tool]``.

    Raises:
        InvalidPathError: Unless the path has exactly two non-empty parts.

    Examples:
        >>> split_tool_path("weather/get_forecast")
        ['weather', 'get_forecast']
        >>> split_tool_path("weather")
        Traceback (most recent call last):
        ...
        mcpaggregator.errors.InvalidPathError: Invalid tool path format 'weather'. Expected 'serverName/toolName'
    """
    parts = path.split("/")
    if len(parts) != 2 or not all(parts):
        raise InvalidPathError(f"Invalid tool path format '{path}'. Expected 'serverName/toolName'")
    return parts


def example_usage(tool: ToolDescriptor) -> str:
    """Composition snippet calling ``tool`` with placeholder arguments.

    Examples:
        >>> print(example_usage(ToolDescriptor(server_name="weather", raw_name="get_forecast", input_schema={"properties": {"city": {}}})))
        result = await tools["weather/get_forecast"]({"city": ...})
        return result
    """
    properties = (tool.input_schema or {}).get("properties") or {}
    args = ", ".join(f'"{name}": ...' for name in properties)
    return f'result = await tools["{tool.path}"]({{{args}}})\nreturn result'


class ToolsOverviewService:
    """Renders server listings and tool detail records."""

    def list_overview(self, servers: Dict[str, ServerInfo]) -> str:
        """Sorted listing of every server's instructions and tool paths.

        Args:
            servers: Registered servers by name.

        Returns:
            The listing followed by a usage note.
        """
        lines: List[str] = []
        for name, info in servers.items():
            if info.instructions:
                lines.append(f"# {name} mcp server instructions: {info.instructions}")
            lines.extend(f"{name}/{tool.display_name}" for tool in info.tools)
        lines.sort()
        return "\n".join(lines) + "\n\n" + SERVERS_OVERVIEW_NOTE

    def get_tool_details(self, servers: Dict[str, ServerInfo], paths: Sequence[str]) -> List[Dict[str, Any]]:
        """Detailed records for ``paths``.

        Unknown tools of a known server are logged and skipped.

        Args:
            servers: Registered servers by name.
            paths: ``server/tool`` paths; the tool part may be a display or raw name.

        Returns:
            One record per resolved path, in request order.

        Raises:
            InvalidPathError: On a malformed path or an unknown server.
        """
        details: List[Dict[str, Any]] = []
        for path in paths:
            server_name, tool_name = split_tool_path(path)
            info = servers.get(server_name)
            if info is None:
                raise InvalidPathError(f"Server '{server_name}' not found")
            tool = next((t for t in info.tools if tool_name in (t.display_name, t.raw_name)), None)
            if tool is None:
                logger.warning(f"Tool '{tool_name}' not found in server '{server_name}'")
                continue
            record: Dict[str, Any] = {
                "name": tool.display_name,
                "serverName": tool.server_name,
                "rawName": tool.raw_name,
                "path": tool.path,
                "description": tool.description,
                "inputSchema": tool.input_schema,
            }
            if tool.output_schema is not None:
                record["outputSchema"] = tool.output_schema
            record["exampleUsage"] = example_usage(tool)
            details.append(record)
        return details
