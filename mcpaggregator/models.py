# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Domain models for the aggregator.

- ``ToolDescriptor``: one live tool of one registered server.
- ``ServerInfo``: a registered server, its connection and descriptors.
- ``StoredToolRecord``: the persisted output-schema provenance of a tool.
- ``MetadataStats``: summary of the metadata store.
- ``SearchResult``: one ranked semantic search hit.

Examples:
    >>> d = ToolDescriptor(server_name="weather", raw_name="get-forecast")
    >>> d.display_name
    'get_forecast'
    >>> d.path
    'weather/get_forecast'
    >>> sorted(d.model_dump(by_alias=True))[:3]
    ['description', 'displayName', 'inputSchema']
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Third-Party
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def to_display_name(raw_name: str) -> str:
    """Derive the binding-safe display name of a tool.

    Only hyphens are rewritten; no other disambiguation is performed.

    Args:
        raw_name: Tool name as advertised by the child server.

    Returns:
        The name with every ``-`` replaced by ``_``.

    Examples:
        >>> to_display_name("send-message")
        'send_message'
        >>> to_display_name("already_ok")
        'already_ok'
        >>> to_display_name("a-b-c")
        'a_b_c'
    """
    return raw_name.replace("-", "_")


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True, extra="ignore")


class ToolDescriptor(CamelModel):
    """In-memory record of one tool advertised by one server.

    Attributes:
        server_name: Owning server.
        raw_name: Name used when calling the tool on the child server.
        display_name: ``raw_name`` with hyphens rewritten to underscores.
        input_schema: JSON schema of the tool arguments.
        output_schema: JSON schema of the structured result, possibly healed from the metadata store.
        description: Human readable description (may be empty).
    """

    server_name: str
    raw_name: str
    display_name: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    output_schema: Optional[Dict[str, Any]] = None
    description: str = ""

    @model_validator(mode="after")
    def _derive_display_name(self) -> "ToolDescriptor":
        if not self.display_name:
            self.display_name = to_display_name(self.raw_name)
        return self

    @property
    def path(self) -> str:
        """Binding path of the tool, ``server/display_name``."""
        return f"{self.server_name}/{self.display_name}"


@dataclass
class ServerInfo:
    """A registered server.

    Attributes:
        name: Server name from configuration.
        connection: The ``ServerConnection`` used to call its tools.
        tools: Descriptors rebuilt on each registration pass.
    """

    name: str
    connection: Any
    tools: List[ToolDescriptor] = field(default_factory=list)

    @property
    def instructions(self) -> Optional[str]:
        """Usage instructions supplied by the server during the handshake."""
        return getattr(self.connection, "instructions", None)


class StoredToolRecord(CamelModel):
    """Persisted output-schema provenance for one ``(server, tool)`` pair.

    ``output_schema`` is the serialized JSON schema text, ``None`` when the
    tool has never advertised one.
    """

    server_name: str
    tool_name: str
    output_schema: Optional[str] = None
    is_original_schema: bool = False
    last_updated: Optional[datetime] = None


class MetadataStats(CamelModel):
    """Summary of the metadata store."""

    total_tools: int = 0
    tools_by_server: Dict[str, int] = Field(default_factory=dict)
    last_update: Optional[datetime] = None


@dataclass
class SearchResult:
    """One semantic search hit, ranked by ``score`` (cosine similarity in [0, 1])."""

    server_name: str
    tool_name: str
    description: str
    score: float
    tool: ToolDescriptor
