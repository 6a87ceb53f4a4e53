"""Tests for logging configuration."""

import logging

from scan_share.app_logging import configure_logging


def test_configure_logging_idempotent() -> None:
    logger = logging.getLogger("scan_share")
    logger.handlers.clear()

    configure_logging()
    first_count = len(logger.handlers)

    configure_logging()
    second_count = len(logger.handlers)

    assert first_count == 1
    assert second_count == 1
    assert logger.propagate is False


def test_configure_logging_applies_level_and_quiets_http_client() -> None:
    logger = logging.getLogger("scan_share")
    logger.handlers.clear()

    configure_logging("DEBUG")

    assert logger.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    configure_logging("INFO")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
