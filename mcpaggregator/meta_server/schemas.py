# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/meta_server/schemas.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Meta-Server Schema Definitions.

This module defines:
- Request models for the meta-tools that take arguments
- ``META_TOOL_DEFINITIONS``, the static part of the advertised tool list
- The dynamic ``get_mcps_servers_overview`` definition, whose description
  embeds the current server overview

Request models reject malformed arguments with short, caller-facing messages
(``"toolPaths is required"``, ``"query must be a string"`` ...), surfaced by
:func:`parse_arguments` as :class:`~mcpaggregator.errors.ValidationError`.

Examples:
    >>> parse_arguments("semantic_search_tools", SemanticSearchRequest, {"query": "send email"}).limit
    5
    >>> parse_arguments("get_tools_overview", GetToolsOverviewRequest, {"toolPaths": ["a/b"]}).tool_paths
    ['a/b']
"""

# Standard
from typing import Any, Dict, List, Optional, Type, TypeVar

# Third-Party
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

# First-Party
from mcpaggregator.errors import ValidationError

SERVERS_OVERVIEW_TOOL = "get_mcps_servers_overview"
TOOLS_OVERVIEW_TOOL = "get_tools_overview"
SEMANTIC_SEARCH_TOOL = "semantic_search_tools"
RUN_CODE_TOOL = "run_functions_code"


def _is_blank(value: Any) -> bool:
    """Missing, empty string, zero or ``False``.

    Examples:
        >>> [_is_blank(v) for v in (None, "", 0, False, [], "x")]
        [True, True, True, True, False, False]
    """
    return value is None or value is False or (isinstance(value, (str, int, float)) and not value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class MetaToolRequest(BaseModel):
    """Base for meta-tool argument models."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GetToolsOverviewRequest(MetaToolRequest):
    """Arguments of ``get_tools_overview``.

    Examples:
        >>> GetToolsOverviewRequest.model_validate({"toolPaths": []}).tool_paths
        []
        >>> try:
        ...     GetToolsOverviewRequest.model_validate({"toolPaths": "a/b"})
        ... except PydanticValidationError as e:
        ...     print(first_error_message(e))
        toolPaths must be an array
    """

    tool_paths: List[str] = Field(
        ...,
        alias="toolPaths",
        description="Array of tool paths in format 'serverName/toolName' (e.g., ['weather/get_forecast', 'database/execute_query'])",
    )

    @model_validator(mode="before")
    @classmethod
    def _check_tool_paths(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        tool_paths = data.get("toolPaths", data.get("tool_paths"))
        if _is_blank(tool_paths):
            raise ValueError("toolPaths is required")
        if not isinstance(tool_paths, list):
            raise ValueError("toolPaths must be an array")
        if not all(isinstance(path, str) for path in tool_paths):
            raise ValueError("toolPaths must be an array of strings")
        return data


class SemanticSearchRequest(MetaToolRequest):
    """Arguments of ``semantic_search_tools``.

    Examples:
        >>> SemanticSearchRequest.model_validate({"query": "files", "limit": 3.0}).limit
        3
        >>> try:
        ...     SemanticSearchRequest.model_validate({"query": "files", "limit": "3"})
        ... except PydanticValidationError as e:
        ...     print(first_error_message(e))
        limit must be a number
    """

    query: str = Field(..., description="Natural language description of what you're looking for (e.g., 'tools for sending emails', 'file management tools')")
    limit: int = Field(default=5, description="Maximum number of results to return (default: 5)")

    @model_validator(mode="before")
    @classmethod
    def _check_query(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        query = data.get("query")
        if _is_blank(query):
            raise ValueError("query is required")
        if not isinstance(query, str):
            raise ValueError("query must be a string")
        limit = data.get("limit")
        if limit is None:
            return {k: v for k, v in data.items() if k != "limit"}
        if not _is_number(limit):
            raise ValueError("limit must be a number")
        return {**data, "limit": int(limit)}


class RunFunctionsCodeRequest(MetaToolRequest):
    """Arguments of ``run_functions_code``.

    Examples:
        >>> try:
        ...     RunFunctionsCodeRequest.model_validate({"code": 42})
        ... except PydanticValidationError as e:
        ...     print(first_error_message(e))
        code must be a string
    """

    code: str = Field(..., description="Python code run as the body of an async function. Use 'await' for tool calls and 'return' the result.")

    @model_validator(mode="before")
    @classmethod
    def _check_code(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        code = data.get("code")
        if _is_blank(code):
            raise ValueError("code is required")
        if not isinstance(code, str):
            raise ValueError("code must be a string")
        return data


def first_error_message(exc: PydanticValidationError) -> str:
    """Message of the first error in ``exc``, without pydantic's prefixes.

    Args:
        exc: Pydantic validation error.

    Returns:
        The raw message of a validator's ``ValueError``, else ``"<loc>: <msg>"``.
    """
    errors = exc.errors()
    if not errors:
        return str(exc)
    error = errors[0]
    cause = (error.get("ctx") or {}).get("error")
    if cause is not None:
        return str(cause)
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{loc}: {error['msg']}" if loc else error["msg"]


RequestT = TypeVar("RequestT", bound=MetaToolRequest)


def parse_arguments(tool_name: str, model: Type[RequestT], arguments: Optional[Dict[str, Any]]) -> RequestT:
    """Validate meta-tool arguments.

    Args:
        tool_name: Meta-tool being called.
        model: Request model for that tool.
        arguments: Raw call arguments.

    Returns:
        The validated request.

    Raises:
        ValidationError: With a caller-facing message.

    Examples:
        >>> parse_arguments("run_functions_code", RunFunctionsCodeRequest, None)
        Traceback (most recent call last):
        ...
        mcpaggregator.errors.ValidationError: Arguments are required for run_functions_code
        >>> parse_arguments("semantic_search_tools", SemanticSearchRequest, {"query": ""})
        Traceback (most recent call last):
        ...
        mcpaggregator.errors.ValidationError: query is required
    """
    if arguments is None:
        raise ValidationError(f"Arguments are required for {tool_name}")
    try:
        return model.model_validate(arguments)
    except PydanticValidationError as e:
        raise ValidationError(first_error_message(e)) from e


def _input_schema(model: Type[MetaToolRequest]) -> Dict[str, Any]:
    schema = model.model_json_schema(by_alias=True)
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    return schema


RUN_FUNCTIONS_CODE_DESCRIPTION = """Execute Python composition code with access to ALL connected MCP server tools.

This is a COMPOSITION & EXECUTION tool for orchestrating workflows:
- Calling several tools in sequence or in parallel
- Processing and transforming tool results
- Conditional logic and error handling
- Combining data from different servers

The code is the body of an async function:
- Call a tool with: await tools["serverName/toolName"]({...arguments...})
- Run calls in parallel with: await gather(tools["a/x"]({}), tools["b/y"]({}))
- Use 'return' to hand back the result (it must be JSON serializable)
- Each tool call returns the MCP call result: {"content": [...], "structuredContent": ..., "isError": ...}
- Only json (dumps and loads), math, re, datetime, time, collections, itertools, statistics, string and random can be imported
- Names and attributes starting with an underscore, class definitions and attribute assignment are rejected
- No filesystem, network or environment access beyond the tools

Single tool call:
    return await tools["weather/get_forecast"]({"latitude": 40.7128, "longitude": -74.0060})

Sequential calls with data flow:
    location = await tools["geo/get_location"]({"city": "New York"})
    coords = location["structuredContent"]
    weather = await tools["weather/get_forecast"]({"latitude": coords["lat"], "longitude": coords["lon"]})
    return {"location": coords, "weather": weather}"""


META_TOOL_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    SEMANTIC_SEARCH_TOOL: {
        "description": """Semantically search for tools based on natural language descriptions. Returns the most relevant tools ranked by similarity score.

This is a SEMANTIC DISCOVERY tool for finding tools when you know what you want to do but not which tools to use.

Returns a JSON array of:
- serverName: The MCP server providing this tool
- toolName: The name of the tool on that server
- description: Tool's description
- score: Relevance score (0.0 to 1.0, higher is more relevant)
- fullPath: Tool path as 'serverName/toolName'

After finding relevant tools, use 'get_tools_overview' to get their schemas and usage examples.""",
        "input_schema": _input_schema(SemanticSearchRequest),
    },
    TOOLS_OVERVIEW_TOOL: {
        "description": """Get documentation for specific tools including schemas, parameters and usage examples.

This is an INTROSPECTION tool. After discovering tools with 'get_mcps_servers_overview' or 'semantic_search_tools', use it to get their full specifications.

Returns (as JSON), per tool:
- Tool name and description
- Complete input schema (and output schema when known)
- Example code calling the tool from 'run_functions_code'""",
        "input_schema": _input_schema(GetToolsOverviewRequest),
    },
    RUN_CODE_TOOL: {
        "description": RUN_FUNCTIONS_CODE_DESCRIPTION,
        "input_schema": _input_schema(RunFunctionsCodeRequest),
    },
}


def servers_overview_tool_definition(servers_overview: str) -> Dict[str, Any]:
    """Definition of ``get_mcps_servers_overview`` embedding the current overview.

    Args:
        servers_overview: Rendered server listing.

    Returns:
        Tool definition dict with ``name``, ``description`` and ``inputSchema``.

    Examples:
        >>> d = servers_overview_tool_definition("weather/get_forecast")
        >>> "weather/get_forecast" in d["description"]
        True
    """
    description = f"""Discover all connected MCP servers and their available tools in this aggregated environment.
This is a DISCOVERY tool that shows the complete landscape of connected servers and their capabilities. Use it first to understand what's available before diving into specific tools.

The description below includes:
- Server instructions (if provided by the server)
- All tools in format 'serverName/toolName' (one per line)

{servers_overview}"""
    return {
        "name": SERVERS_OVERVIEW_TOOL,
        "description": description,
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    }
