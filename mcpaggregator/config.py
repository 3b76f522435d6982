# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Configuration for the MCP aggregator.

Two kinds of configuration live here:

- ``Settings``: process-wide knobs (database, logging, embeddings, sandbox
  limits) read from ``MCPAGG_*`` environment variables or a ``.env`` file.
- ``ServerConnectionConfig``: one entry per child MCP server, loaded by
  ``load_server_configs`` from ``MCP_SERVERS_CONFIG``, ``--config <json>`` or
  ``--config-file <path>``.

Examples:
    >>> s = Settings(embedding_provider="hashing", sandbox_timeout_seconds=5)
    >>> s.sandbox_timeout_seconds
    5.0
    >>> cfg = ServerConnectionConfig(name="weather", command="uvx", args=["weather-mcp"])
    >>> cfg.args
    ['weather-mcp']
"""

# Standard
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

# Third-Party
import orjson
from pydantic import BaseModel, Field, field_validator, SecretStr
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

# First-Party
from mcpaggregator.errors import ValidationError

SERVERS_CONFIG_ENV = "MCP_SERVERS_CONFIG"


class Settings(BaseSettings):
    """Aggregator settings.

    Every field can be overridden with an ``MCPAGG_`` prefixed environment
    variable, e.g. ``MCPAGG_SANDBOX_RUNTIME=inprocess``.
    """

    model_config = SettingsConfigDict(env_prefix="MCPAGG_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "mcp-aggregator"
    app_version: str = "0.3.0"

    # Metadata store
    database_url: str = Field(default="sqlite:///./.database/mcps.db", description="SQLAlchemy URL of the tool metadata cache")

    # Logging
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_to_file: bool = False
    log_file: Optional[str] = None
    log_folder: Optional[str] = None

    # Embeddings / semantic search
    embedding_provider: Literal["hashing", "sentence-transformers", "openai"] = "hashing"
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_dimension: int = Field(default=384, ge=8, le=8192)
    embedding_api_key: Optional[SecretStr] = None
    embedding_api_base: str = "https://api.openai.com/v1"
    embedding_cache_size: int = Field(default=4096, ge=0)
    search_default_limit: int = Field(default=5, ge=1)
    search_max_limit: int = Field(default=50, ge=1)

    # Connections
    connection_timeout_seconds: float = Field(default=30.0, gt=0)
    tool_call_timeout_seconds: float = Field(default=30.0, gt=0)

    # Sandbox
    sandbox_runtime: Literal["subprocess", "inprocess"] = "subprocess"
    sandbox_timeout_seconds: float = Field(default=60.0, gt=0)
    sandbox_memory_limit_mb: int = Field(default=512, ge=0)
    sandbox_cpu_limit_seconds: int = Field(default=30, ge=0)
    sandbox_python_executable: Optional[str] = None


class ServerConnectionConfig(BaseModel):
    """Spawn parameters for one child MCP server.

    Examples:
        >>> ServerConnectionConfig(name="git", command="uvx").args
        []
        >>> try:
        ...     ServerConnectionConfig(name="a/b", command="x")
        ... except PydanticValidationError:
        ...     print("rejected")
        rejected
    """

    name: str = Field(..., min_length=1, max_length=255)
    command: str = Field(..., min_length=1)
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject names that would break ``server/tool`` paths.

        Args:
            v: Candidate server name.

        Returns:
            The stripped name.

        Raises:
            ValueError: If the name contains a slash or is blank.
        """
        v = v.strip()
        if not v:
            raise ValueError("Server name must not be blank")
        if "/" in v:
            raise ValueError(f"Server name '{v}' must not contain '/'")
        return v


def parse_server_configs(raw: Any) -> List[ServerConnectionConfig]:
    """Turn decoded JSON into server configs.

    Accepts either a list of ``{name, command, args, env}`` objects or the
    ``{"mcpServers": {name: {command, args, env}}}`` layout used by MCP
    desktop clients.

    Args:
        raw: Decoded JSON document.

    Returns:
        List of validated configs.

    Raises:
        ValidationError: If the document has the wrong shape or a duplicate name.

    Examples:
        >>> [c.name for c in parse_server_configs([{"name": "a", "command": "x"}])]
        ['a']
        >>> [c.name for c in parse_server_configs({"mcpServers": {"b": {"command": "y"}}})]
        ['b']
    """
    if isinstance(raw, Mapping) and isinstance(raw.get("mcpServers"), Mapping):
        entries: Sequence[Any] = [{"name": name, **(body or {})} for name, body in raw["mcpServers"].items()]
    elif isinstance(raw, list):
        entries = raw
    else:
        raise ValidationError("Server configuration must be a JSON array or an object with 'mcpServers'")

    configs: List[ServerConnectionConfig] = []
    seen: set[str] = set()
    for entry in entries:
        try:
            config = ServerConnectionConfig.model_validate(entry)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid server configuration: {e}") from e
        if config.name in seen:
            raise ValidationError(f"Duplicate server name '{config.name}' in configuration")
        seen.add(config.name)
        configs.append(config)
    return configs


def _decode(text: str, source: str) -> Any:
    try:
        return orjson.loads(text)
    except orjson.JSONDecodeError as e:
        raise ValidationError(f"Error parsing {source}: {e}") from e


def load_server_configs(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> List[ServerConnectionConfig]:
    """Load child server configurations.

    Sources are tried in order: the ``MCP_SERVERS_CONFIG`` environment
    variable, ``--config '<json>'``, then ``--config-file <path>``.

    Args:
        argv: Command line arguments to inspect (without the program name).
        environ: Environment mapping, defaults to ``os.environ``.

    Returns:
        List of server configs.

    Raises:
        ValidationError: If no source is present or the selected source is invalid.

    Examples:
        >>> cfgs = load_server_configs([], {"MCP_SERVERS_CONFIG": '[{"name": "w", "command": "node"}]'})
        >>> cfgs[0].command
        'node'
        >>> load_server_configs(["--config", '[{"name": "x", "command": "y"}]'], {})[0].name
        'x'
    """
    argv = list(argv or [])
    environ = os.environ if environ is None else environ

    if environ.get(SERVERS_CONFIG_ENV):
        return parse_server_configs(_decode(environ[SERVERS_CONFIG_ENV], SERVERS_CONFIG_ENV))

    if "--config" in argv:
        idx = argv.index("--config")
        if idx + 1 < len(argv):
            return parse_server_configs(_decode(argv[idx + 1], "--config argument"))

    if "--config-file" in argv:
        idx = argv.index("--config-file")
        if idx + 1 < len(argv):
            path = Path(argv[idx + 1])
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as e:
                raise ValidationError(f"Error reading config file {path}: {e}") from e
            return parse_server_configs(_decode(text, str(path)))

    raise ValidationError(f"No configuration provided. Use one of: environment variable {SERVERS_CONFIG_ENV}, --config '<json>', --config-file <path>")


settings = Settings()
