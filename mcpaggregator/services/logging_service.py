# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Logging Service Implementation.

Stdout carries the MCP stdio transport, so console logging always goes to
stderr. When ``settings.log_to_file`` is enabled a rotating JSON file handler
is attached as well.
"""

# Standard
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from typing import Dict, Optional

# Third-Party
from pythonjsonlogger import jsonlogger

# First-Party
from mcpaggregator.config import settings

text_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

json_formatter = jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")

# Global handlers will be created lazily
_file_handler: Optional[RotatingFileHandler] = None
_stderr_handler: Optional[logging.StreamHandler] = None


def _get_file_handler() -> RotatingFileHandler:
    """Get or create the JSON file handler.

    Returns:
        RotatingFileHandler: The file handler for JSON logging.

    Raises:
        ValueError: If file logging is disabled or no log file specified.
    """
    global _file_handler  # pylint: disable=global-statement
    if _file_handler is None:
        if not settings.log_to_file or not settings.log_file:
            raise ValueError("File logging is disabled or no log file specified")

        if settings.log_folder:
            os.makedirs(settings.log_folder, exist_ok=True)
            log_path = os.path.join(settings.log_folder, settings.log_file)
        else:
            log_path = settings.log_file

        _file_handler = RotatingFileHandler(log_path, maxBytes=1024 * 1024, backupCount=5)
        _file_handler.setFormatter(json_formatter)
    return _file_handler


def _get_stderr_handler() -> logging.StreamHandler:
    """Get or create the console handler.

    Returns:
        logging.StreamHandler: handler writing to stderr, text or JSON per ``settings.log_format``.
    """
    global _stderr_handler  # pylint: disable=global-statement
    if _stderr_handler is None:
        _stderr_handler = logging.StreamHandler(sys.stderr)
        _stderr_handler.setFormatter(json_formatter if settings.log_format == "json" else text_formatter)
    return _stderr_handler


class LoggingService:
    """Configures the root logger once and hands out named loggers.

    Examples:
        >>> service = LoggingService()
        >>> service.get_logger("demo").name
        'demo'
    """

    def __init__(self, level: Optional[str] = None):
        """Initialize logging service.

        Args:
            level: Level name, defaults to ``settings.log_level``.
        """
        self._level = (level or settings.log_level).upper()
        self._loggers: Dict[str, logging.Logger] = {}
        self._initialized = False

    @property
    def level(self) -> str:
        """Current level name."""
        return self._level

    def initialize(self) -> None:
        """Attach handlers to the root logger. Safe to call more than once.

        Examples:
            >>> service = LoggingService(level="warning")
            >>> service.initialize()
            >>> service.initialize()
            >>> logging.getLogger().level == logging.WARNING
            True
            >>> service.shutdown()
        """
        root = logging.getLogger()
        root.setLevel(getattr(logging, self._level, logging.INFO))
        if self._initialized:
            return

        handler = _get_stderr_handler()
        if handler not in root.handlers:
            root.addHandler(handler)

        if settings.log_to_file and settings.log_file:
            try:
                file_handler = _get_file_handler()
                if file_handler not in root.handlers:
                    root.addHandler(file_handler)
                logging.getLogger(__name__).info(f"File logging enabled: {settings.log_folder or '.'}/{settings.log_file}")
            except (OSError, ValueError) as e:
                logging.getLogger(__name__).warning(f"Failed to initialize file logging: {e}")

        self._initialized = True
        logging.getLogger(__name__).debug("Logging service initialized")

    def shutdown(self) -> None:
        """Detach the handlers added by ``initialize``."""
        root = logging.getLogger()
        for handler in (_stderr_handler, _file_handler):
            if handler is not None and handler in root.handlers:
                root.removeHandler(handler)
        self._initialized = False

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a named logger.

        Loggers propagate to the root logger configured by ``initialize``.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]

    def set_level(self, level: str) -> None:
        """Set minimum log level on the root logger.

        Args:
            level: Level name such as ``"DEBUG"``.

        Raises:
            ValueError: If ``level`` is not a logging level name.

        Examples:
            >>> service = LoggingService()
            >>> service.set_level("nope")
            Traceback (most recent call last):
            ...
            ValueError: Unknown log level: nope
        """
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        self._level = level.upper()
        logging.getLogger().setLevel(numeric)
