# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpaggregator/services/test_logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the logging service.
"""

# Standard
import logging

# Third-Party
import pytest

# First-Party
from mcpaggregator.services import logging_service
from mcpaggregator.services.logging_service import LoggingService


@pytest.fixture
def service():
    svc = LoggingService(level="info")
    yield svc
    svc.shutdown()


def test_initialize_attaches_stderr_handler_once(service):
    service.initialize()
    service.initialize()

    handler = logging_service._get_stderr_handler()  # pylint: disable=protected-access
    assert logging.getLogger().handlers.count(handler) == 1
    assert service.level == "INFO"


def test_shutdown_detaches_handler(service):
    service.initialize()
    service.shutdown()

    assert logging_service._get_stderr_handler() not in logging.getLogger().handlers  # pylint: disable=protected-access


def test_set_level(service):
    service.set_level("debug")

    assert service.level == "DEBUG"
    assert logging.getLogger().level == logging.DEBUG


def test_set_unknown_level(service):
    with pytest.raises(ValueError, match="Unknown log level"):
        service.set_level("chatty")


def test_get_logger_is_cached(service):
    assert service.get_logger("mcpaggregator.x") is service.get_logger("mcpaggregator.x")


def test_file_logging_writes_json(monkeypatch, tmp_path):
    monkeypatch.setattr(logging_service.settings, "log_to_file", True)
    monkeypatch.setattr(logging_service.settings, "log_file", "agg.log")
    monkeypatch.setattr(logging_service.settings, "log_folder", str(tmp_path))
    monkeypatch.setattr(logging_service, "_file_handler", None)
    svc = LoggingService(level="info")
    svc.initialize()
    try:
        logging.getLogger("mcpaggregator.test").info("hello file")
        logging_service._file_handler.flush()  # pylint: disable=protected-access
    finally:
        svc.shutdown()
        logging_service._file_handler.close()  # pylint: disable=protected-access

    content = (tmp_path / "agg.log").read_text(encoding="utf-8")
    assert '"message": "hello file"' in content
