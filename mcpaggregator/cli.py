# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/cli.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

mcp-aggregator CLI ─ run the meta-server and inspect its metadata cache

This module is exposed as a **console-script** via:

    [project.scripts]
    mcp-aggregator = "mcpaggregator.cli:main"

Features
─────────
* serve: connects to the configured MCP servers and serves the meta-tools on stdio
* stats: prints what the metadata store currently holds

Typical usage
─────────────
```console
$ mcp-aggregator serve --config-file servers.json
$ MCP_SERVERS_CONFIG='[{"name": "git", "command": "uvx", "args": ["mcp-server-git"]}]' mcp-aggregator serve
$ mcp-aggregator stats
```
"""

# Standard
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

# Third-Party
import typer
from typing_extensions import Annotated

# First-Party
from mcpaggregator.aggregator import Aggregator
from mcpaggregator.config import load_server_configs, ServerConnectionConfig, settings
from mcpaggregator.errors import AggregatorError
from mcpaggregator.meta_server.service import MetaServerService, to_json_text
from mcpaggregator.services.logging_service import LoggingService
from mcpaggregator.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)

app = typer.Typer(help="MCP server that aggregates other MCP servers behind discovery and composition meta-tools.", add_completion=False)


def config_argv(config: Optional[str], config_file: Optional[Path]) -> List[str]:
    """Translate CLI options into the argument list read by ``load_server_configs``.

    Examples:
        >>> config_argv('[{"name": "a", "command": "b"}]', None)
        ['--config', '[{"name": "a", "command": "b"}]']
        >>> config_argv(None, Path("servers.json"))
        ['--config-file', 'servers.json']
    """
    argv: List[str] = []
    if config:
        argv += ["--config", config]
    if config_file:
        argv += ["--config-file", str(config_file)]
    return argv


async def _serve(server_configs: List[ServerConnectionConfig]) -> None:
    aggregator = Aggregator(settings, server_configs)
    try:
        await aggregator.start()
        await MetaServerService(aggregator).run_stdio()
    finally:
        await aggregator.shutdown()


@app.command(help="Connect to the configured MCP servers and serve the meta-tools over stdio.")
def serve(
    config: Annotated[Optional[str], typer.Option("--config", "-c", help="Server configuration as a JSON string.")] = None,
    config_file: Annotated[Optional[Path], typer.Option("--config-file", "-f", help="Path to a JSON server configuration file.")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", "-l", help="Override MCPAGG_LOG_LEVEL.")] = None,
):
    logging_service = LoggingService(log_level)
    logging_service.initialize()
    try:
        server_configs = load_server_configs(config_argv(config, config_file))
    except AggregatorError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    try:
        asyncio.run(_serve(server_configs))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logging_service.shutdown()


@app.command(help="Print the contents summary of the tool metadata store.")
def stats(
    database_url: Annotated[Optional[str], typer.Option("--database-url", "-d", help="Override MCPAGG_DATABASE_URL.")] = None,
):
    store = MetadataStore(database_url or settings.database_url)
    try:
        store.initialize()
        summary = store.get_stats()
    except AggregatorError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        store.close()
    typer.echo(to_json_text(summary.model_dump(by_alias=True, mode="json")))


def main() -> None:  # noqa: D401
    app()


if __name__ == "__main__":  # pragma: no cover - executed only when run directly
    main()
