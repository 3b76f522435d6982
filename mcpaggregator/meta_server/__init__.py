# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/meta_server/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Meta-Server package for the MCP aggregator.

This package exposes a fixed set of meta-tools (get_mcps_servers_overview,
get_tools_overview, semantic_search_tools, run_functions_code) instead of the
underlying tools of the aggregated servers.
"""
