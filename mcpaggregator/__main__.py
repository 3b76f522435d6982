# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/__main__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Allows ``python -m mcpaggregator serve ...``.
"""

# First-Party
from mcpaggregator.cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
