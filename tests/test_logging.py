"""Tests for logging configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from loguru import logger

from roster_sync.logging import (
    LogContext,
    bind_school,
    bind_scope,
    get_logger,
    is_configured,
    redact,
    reset_logging,
    setup_logging,
)

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _reset_logging_state() -> Generator[None, None, None]:
    """Reset loguru state before and after each test."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def captured() -> Generator[list[dict], None, None]:
    """Collect every record emitted during the test."""
    records: list[dict] = []
    handler_id = logger.add(lambda msg: records.append(msg.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_marks_configured(self) -> None:
        setup_logging(level="INFO")
        assert is_configured()

    def test_reset_logging(self) -> None:
        setup_logging(level="INFO")
        reset_logging()
        assert not is_configured()

    def test_verbose_enables_debug_for_httpx(self) -> None:
        setup_logging(level="WARNING", verbose=True)
        assert logging.getLogger("httpx").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    def test_quiet_silences_httpx(self) -> None:
        setup_logging(level="DEBUG", quiet=True)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_file_logging(self, tmp_path: Path) -> None:
        log_file = tmp_path / "sync.log"
        setup_logging(level="INFO", log_file=log_file)

        get_logger("test").info("written to file")
        logger.complete()

        assert "written to file" in log_file.read_text()

    def test_stdlib_records_are_intercepted(self) -> None:
        setup_logging(level="DEBUG")
        captured: list[dict] = []
        handler_id = logger.add(lambda msg: captured.append(msg.record), level="DEBUG")
        try:
            logging.getLogger("roster_sync.test").warning("from stdlib")
        finally:
            logger.remove(handler_id)

        assert any(r["message"] == "from stdlib" for r in captured)


class TestRedaction:
    """Secrets never reach log output."""

    def test_bearer_token_masked(self) -> None:
        assert redact("Authorization: Bearer abc.DEF-123") == "Authorization: Bearer ***"

    def test_basic_credentials_masked(self) -> None:
        assert redact("Basic dGVzdDpzZWNyZXQ=") == "Basic ***"

    def test_client_secret_masked(self) -> None:
        assert "s3cr3t" not in redact("client_secret=s3cr3t&grant_type=client_credentials")
        assert '"tok"' not in redact('{"access_token": "tok", "expires_in": 10}')

    def test_plain_message_untouched(self) -> None:
        assert redact("Synced 12 students") == "Synced 12 students"

    def test_patcher_redacts_records(self) -> None:
        setup_logging(level="DEBUG")
        records: list[dict] = []
        handler_id = logger.add(lambda msg: records.append(msg.record), level="DEBUG")
        try:
            get_logger("test").info("sending Bearer supersecret")
        finally:
            logger.remove(handler_id)

        assert records[-1]["message"] == "sending Bearer ***"


class TestContextBinding:
    def test_get_logger_binds_name(self, captured: list[dict]) -> None:
        get_logger("roster_sync.sync").info("hello")
        assert captured[-1]["extra"]["name"] == "roster_sync.sync"

    def test_bind_scope(self, captured: list[dict]) -> None:
        bind_scope("district:7", run_id=3).info("fan out")
        extra = captured[-1]["extra"]
        assert extra["scope"] == "district:7"
        assert extra["run_id"] == 3

    def test_bind_school(self, captured: list[dict]) -> None:
        bind_school(4, "s-4").info("applying")
        extra = captured[-1]["extra"]
        assert extra["scope"] == "school:4"
        assert extra["school"] == "s-4"

    def test_log_context(self, captured: list[dict]) -> None:
        with LogContext(scope="school:9"):
            logger.info("inside")
        logger.info("outside")

        assert captured[-2]["extra"]["scope"] == "school:9"
        assert "scope" not in captured[-1]["extra"]
