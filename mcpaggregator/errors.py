# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/errors.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Exception types shared across the aggregator.

Startup failures for one server or tool are isolated and logged; the facade
turns every error below into a structured payload so nothing crosses the MCP
boundary as an exception.

Examples:
    >>> err = SandboxExecutionError("boom", error_type="RuntimeError")
    >>> err.to_dict()["error"]
    'RuntimeError'
    >>> isinstance(DisplayNameCollisionError("x"), RegistrationError)
    True
"""

# Standard
from typing import Any, Dict, List, Optional


class AggregatorError(Exception):
    """Base exception for the aggregator."""


class ConnectionError(AggregatorError):  # pylint: disable=redefined-builtin
    """Opening or using a child server session failed."""

    def __init__(self, server_name: str, message: str):
        self.server_name = server_name
        super().__init__(f"Failed to connect to {server_name}: {message}")


class RegistrationError(AggregatorError):
    """A server could not be registered (duplicate, missing connection, listing failure)."""


class DisplayNameCollisionError(RegistrationError):
    """Two raw tool names of one server map to the same display name."""

    def __init__(self, server_name: str, collisions: Optional[Dict[str, List[str]]] = None):
        self.server_name = server_name
        self.collisions = collisions or {}
        detail = "; ".join(f"{display} <- {', '.join(raws)}" for display, raws in sorted(self.collisions.items()))
        super().__init__(f"Server '{server_name}' has colliding tool display names: {detail}")


class PersistenceError(AggregatorError):
    """The metadata store could not be read or written."""


class InvalidPathError(AggregatorError):
    """A tool path is malformed or names an unknown server."""


class ValidationError(AggregatorError):
    """Arguments of an external call are malformed."""


class IndexNotInitializedError(AggregatorError):
    """The semantic index was used before initialize()."""


class SandboxExecutionError(AggregatorError):
    """Composition code failed: it raised, timed out, or a binding call failed.

    Attributes:
        error_type: Name of the underlying exception class.
        message: Human readable failure message.
        traceback: Formatted traceback from inside the sandbox, if available.
        output: Anything the composition code printed before failing.
    """

    def __init__(self, message: str, error_type: str = "SandboxExecutionError", traceback: Optional[str] = None, output: str = ""):
        self.message = message
        self.error_type = error_type
        self.traceback = traceback
        self.output = output
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Return the structured payload handed back to callers.

        Returns:
            Dict with ``error``, ``message`` and optional ``traceback`` / ``output`` keys.
        """
        payload: Dict[str, Any] = {"error": self.error_type, "message": self.message}
        if self.traceback:
            payload["traceback"] = self.traceback
        if self.output:
            payload["output"] = self.output
        return payload
