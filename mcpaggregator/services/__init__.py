# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Services behind the aggregator facade: connections, metadata store, tool
registry, semantic index, sandbox executor and overview helpers.
"""
