# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpaggregator/services/test_connection_manager.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the per-server connection manager.
"""

# Standard
import asyncio
from unittest.mock import AsyncMock

# Third-Party
import pytest

# First-Party
from mcpaggregator.errors import ConnectionError  # pylint: disable=redefined-builtin
from mcpaggregator.services.connection_manager import ConnectionManager
from tests.utils.mcp_fakes import FakeSession, make_connector, make_tool, server_config


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_create_connection_exposes_session_and_instructions(self, connection_manager):
        connection = await connection_manager.create_connection(server_config("chat"))

        try:
            assert connection.alive is True
            assert connection.instructions == "Channels start with #."
            assert connection_manager.get_connection("chat") is connection
            assert connection_manager.get_connection_count() == 1
        finally:
            await connection_manager.close_all()

    @pytest.mark.asyncio
    async def test_existing_connection_is_reused(self, connection_manager):
        first = await connection_manager.create_connection(server_config("chat"))
        second = await connection_manager.create_connection(server_config("chat"))

        assert first is second
        await connection_manager.close_all()

    @pytest.mark.asyncio
    async def test_connector_failure_raises_connection_error(self, sessions):
        manager = ConnectionManager(connector=make_connector(sessions, failing=["chat"]), timeout=2)

        with pytest.raises(ConnectionError) as exc_info:
            await manager.create_connection(server_config("chat"))

        assert exc_info.value.server_name == "chat"
        assert manager.get_connection("chat") is None

    @pytest.mark.asyncio
    async def test_handshake_timeout(self):
        async def slow_connector(config, stack):
            await asyncio.sleep(10)

        manager = ConnectionManager(connector=slow_connector, timeout=0.05)

        with pytest.raises(ConnectionError, match="timed out"):
            await manager.create_connection(server_config("slow"))

    @pytest.mark.asyncio
    async def test_list_and_call_tools(self):
        session = FakeSession([make_tool("echo")])
        manager = ConnectionManager(connector=make_connector({"echo": session}), timeout=2)
        connection = await manager.create_connection(server_config("echo"))

        tools = await connection.list_tools()
        result = await connection.call_tool("echo", {"x": 1})

        assert [t.name for t in tools] == ["echo"]
        assert result["structuredContent"] == {"echo": {"x": 1}}
        assert result["content"][0]["type"] == "text"
        assert session.calls == [("echo", {"x": 1})]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_closed_connection_rejects_calls(self, connection_manager):
        connection = await connection_manager.create_connection(server_config("chat"))
        await connection_manager.close_connection("chat")

        assert connection.alive is False
        assert connection_manager.get_connection("chat") is None
        with pytest.raises(ConnectionError, match="closed"):
            await connection.list_tools()

    @pytest.mark.asyncio
    async def test_close_all_exits_transport_contexts(self):
        exit_callback = AsyncMock()

        async def connector(config, stack):
            stack.push_async_callback(exit_callback)
            return FakeSession([]), None

        manager = ConnectionManager(connector=connector, timeout=2)
        await manager.create_connection(server_config("a"))
        await manager.create_connection(server_config("b"))

        await manager.close_all()

        assert exit_callback.await_count == 2
        assert manager.get_all_connections() == {}
