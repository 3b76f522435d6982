# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpaggregator/test_config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for settings and child server configuration loading.
"""

# Standard
import json

# Third-Party
import pytest

# First-Party
from mcpaggregator.config import load_server_configs, parse_server_configs, SERVERS_CONFIG_ENV, Settings
from mcpaggregator.errors import ValidationError

SERVERS = [
    {"name": "weather", "command": "node", "args": ["weather.js"], "env": {"API_KEY": "x"}},
    {"name": "git", "command": "uvx", "args": ["mcp-server-git"]},
]


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)

        assert s.embedding_provider == "hashing"
        assert s.sandbox_runtime == "subprocess"
        assert s.search_default_limit == 5

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("MCPAGG_SANDBOX_RUNTIME", "inprocess")
        monkeypatch.setenv("MCPAGG_DATABASE_URL", "sqlite://")

        s = Settings(_env_file=None)

        assert s.sandbox_runtime == "inprocess"
        assert s.database_url == "sqlite://"


class TestLoadServerConfigs:
    def test_from_environment(self):
        configs = load_server_configs([], {SERVERS_CONFIG_ENV: json.dumps(SERVERS)})

        assert [c.name for c in configs] == ["weather", "git"]
        assert configs[0].env == {"API_KEY": "x"}

    def test_from_config_argument(self):
        configs = load_server_configs(["serve", "--config", json.dumps(SERVERS)], {})

        assert configs[1].args == ["mcp-server-git"]

    def test_from_config_file(self, tmp_path):
        path = tmp_path / "servers.json"
        path.write_text(json.dumps({"mcpServers": {"git": {"command": "uvx", "args": ["mcp-server-git"]}}}), encoding="utf-8")

        configs = load_server_configs(["--config-file", str(path)], {})

        assert [(c.name, c.command) for c in configs] == [("git", "uvx")]

    def test_environment_wins(self):
        configs = load_server_configs(["--config", json.dumps(SERVERS[1:])], {SERVERS_CONFIG_ENV: json.dumps(SERVERS[:1])})

        assert [c.name for c in configs] == ["weather"]

    def test_no_source(self):
        with pytest.raises(ValidationError, match="No configuration provided"):
            load_server_configs([], {})

    def test_invalid_json(self):
        with pytest.raises(ValidationError, match="Error parsing --config argument"):
            load_server_configs(["--config", "{not json"], {})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="Error reading config file"):
            load_server_configs(["--config-file", str(tmp_path / "absent.json")], {})


class TestParseServerConfigs:
    def test_duplicate_names(self):
        with pytest.raises(ValidationError, match="Duplicate server name 'a'"):
            parse_server_configs([{"name": "a", "command": "x"}, {"name": "a", "command": "y"}])

    def test_slash_in_name(self):
        with pytest.raises(ValidationError, match="Invalid server configuration"):
            parse_server_configs([{"name": "a/b", "command": "x"}])

    def test_wrong_shape(self):
        with pytest.raises(ValidationError):
            parse_server_configs({"servers": []})
