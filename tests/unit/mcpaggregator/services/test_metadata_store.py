# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpaggregator/services/test_metadata_store.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the SQLAlchemy-backed metadata store.
"""

# Third-Party
import pytest

# First-Party
from mcpaggregator.errors import PersistenceError
from mcpaggregator.services.metadata_store import MetadataStore


class TestMetadataStore:
    def test_save_and_get(self, store):
        saved = store.save_tool("weather", "forecast", '{"type":"object"}', True)

        fetched = store.get_tool("weather", "forecast")
        assert fetched.output_schema == '{"type":"object"}'
        assert fetched.is_original_schema is True
        assert fetched.last_updated is not None
        assert saved.tool_name == "forecast"

    def test_save_is_an_upsert(self, store):
        store.save_tool("weather", "forecast", None, False)
        store.save_tool("weather", "forecast", '{"type":"string"}', True)

        assert len(store.get_server_tools("weather")) == 1
        assert store.get_tool("weather", "forecast").output_schema == '{"type":"string"}'

    def test_get_missing_tool_returns_none(self, store):
        assert store.get_tool("weather", "nope") is None

    def test_update_tool(self, store):
        store.save_tool("weather", "forecast", None, False)

        assert store.update_tool("weather", "forecast", '{"a":1}', True) is True
        assert store.update_tool("weather", "missing", '{"a":1}', True) is False
        assert store.get_tool("weather", "forecast").is_original_schema is True

    def test_server_tools_are_ordered_by_name(self, store):
        for name in ("zeta", "alpha", "mid"):
            store.save_tool("s", name, None, False)

        assert [r.tool_name for r in store.get_server_tools("s")] == ["alpha", "mid", "zeta"]

    def test_delete_tool(self, store):
        store.save_tool("s", "t", None, False)

        assert store.delete_tool("s", "t") is True
        assert store.delete_tool("s", "t") is False

    def test_delete_server_tools_and_server_names(self, store):
        store.save_tool("a", "one", None, False)
        store.save_tool("a", "two", None, False)
        store.save_tool("b", "one", None, False)

        assert store.get_all_server_names() == ["a", "b"]
        assert store.delete_server_tools("a") == 2
        assert store.get_all_server_names() == ["b"]
        assert [(r.server_name, r.tool_name) for r in store.get_all_tools()] == [("b", "one")]

    def test_stats(self, store):
        store.save_tool("a", "one", None, False)
        store.save_tool("a", "two", None, False)
        store.save_tool("b", "one", None, False)

        stats = store.get_stats()

        assert stats.total_tools == 3
        assert stats.tools_by_server == {"a": 2, "b": 1}
        assert stats.last_update is not None

    def test_uninitialized_store_raises_persistence_error(self):
        store = MetadataStore("sqlite://")

        with pytest.raises(PersistenceError, match="not initialized"):
            store.get_server_tools("a")

    def test_file_database_persists_across_instances(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'nested' / 'mcps.db'}"
        first = MetadataStore(url)
        first.initialize()
        first.save_tool("a", "one", None, False)
        first.close()

        second = MetadataStore(url)
        second.initialize()
        try:
            assert second.get_tool("a", "one") is not None
        finally:
            second.close()

    def test_initialize_is_idempotent(self, store):
        store.initialize()

        assert store.initialized is True
