"""Tests for stackmemory.log."""

from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from stackmemory.log import configure_logging


@pytest.fixture(autouse=True)
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_rich_handler_for_cli():
    configure_logging("info", rich_output=True)
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0], RichHandler)
    assert root.level == logging.INFO


def test_plain_handler_for_server():
    configure_logging(logging.DEBUG, rich_output=False)
    root = logging.getLogger()
    assert type(root.handlers[0]) is logging.StreamHandler
    assert root.level == logging.DEBUG


def test_reconfigure_replaces_handler():
    configure_logging("WARNING")
    configure_logging("ERROR")
    assert len(logging.getLogger().handlers) == 1


def test_provider_loggers_stay_quiet():
    configure_logging("DEBUG")
    assert logging.getLogger("LiteLLM").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING
