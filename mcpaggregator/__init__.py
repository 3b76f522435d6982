# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

MCP Aggregator - a meta-server in front of many MCP servers.

The aggregator connects to every configured child MCP server, keeps a durable
cache of tool output schemas, indexes tool descriptions for semantic search
and runs caller-supplied composition code against sandboxed tool bindings.
"""

__author__ = "MCP Aggregator Contributors"
__copyright__ = "Copyright 2025"
__license__ = "Apache 2.0"
__version__ = "0.3.0"
__description__ = "Meta-server aggregating MCP servers with semantic discovery and sandboxed composition"
__packages__ = ("mcpaggregator",)
