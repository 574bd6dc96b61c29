"""Tests for umbrella_mail_import.logging."""

from __future__ import annotations

import logging

import structlog

from umbrella_mail_import.config import LoggingConfig
from umbrella_mail_import.logging import (
    bind_import_context,
    clear_import_context,
    setup_logging,
    setup_logging_from_config,
)


class TestSetupLogging:
    def test_json_mode(self):
        setup_logging(json=True, level="INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_level_case_insensitive(self):
        setup_logging(level="warning")
        assert logging.getLogger().level == logging.WARNING

    def test_quiets_third_party_loggers(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("botocore").level == logging.WARNING
        assert logging.getLogger("aiokafka").level == logging.WARNING

    def test_from_config(self):
        setup_logging_from_config(LoggingConfig(level="DEBUG", json_output=False))
        assert logging.getLogger().level == logging.DEBUG


class TestImportContext:
    def test_bind_and_clear(self):
        bind_import_context("msg-42", attempt=2)
        bound = structlog.contextvars.get_contextvars()
        assert bound == {"provider_message_id": "msg-42", "attempt": 2}

        clear_import_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_replaces_previous_message(self):
        bind_import_context("msg-1", stage="body")
        bind_import_context("msg-2")
        assert structlog.contextvars.get_contextvars() == {"provider_message_id": "msg-2"}
        clear_import_context()
