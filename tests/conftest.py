# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared fixtures: isolated settings, an in-memory metadata store and fake
child servers.
"""

# Standard
from typing import Dict

# Third-Party
import pytest

# First-Party
from mcpaggregator.config import Settings
from mcpaggregator.services.connection_manager import ConnectionManager
from mcpaggregator.services.metadata_store import MetadataStore
from tests.utils.mcp_fakes import FakeSession, make_connector, make_tool


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment: in-memory DB, hashing embeddings, in-process sandbox."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        embedding_provider="hashing",
        embedding_dimension=384,
        sandbox_runtime="inprocess",
        sandbox_timeout_seconds=5,
        tool_call_timeout_seconds=2,
        connection_timeout_seconds=2,
    )


@pytest.fixture
def store():
    """Initialized in-memory metadata store."""
    metadata_store = MetadataStore("sqlite://")
    metadata_store.initialize()
    yield metadata_store
    metadata_store.close()


@pytest.fixture
def chat_session() -> FakeSession:
    return FakeSession(
        [
            make_tool("send-message", "Send a message to a channel", {"channel": {"type": "string"}, "text": {"type": "string"}}),
            make_tool("send-email", "Send an email", {"to": {"type": "string"}}),
        ],
        handlers={"send-message": lambda args: {"ok": True, "channel": args.get("channel")}},
    )


@pytest.fixture
def crypto_session() -> FakeSession:
    return FakeSession(
        [make_tool("sha256", "Compute SHA-256 hash", {"text": {"type": "string"}}, output_schema={"type": "object", "properties": {"digest": {"type": "string"}}})],
        handlers={"sha256": lambda args: {"digest": f"hash({args.get('text')})"}},
    )


@pytest.fixture
def sessions(chat_session, crypto_session) -> Dict[str, FakeSession]:
    return {"chat": chat_session, "crypto": crypto_session}


@pytest.fixture
def connection_manager(sessions) -> ConnectionManager:
    return ConnectionManager(connector=make_connector(sessions, instructions={"chat": "Channels start with #."}), timeout=2)
