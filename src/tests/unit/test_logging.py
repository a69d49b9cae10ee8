"""Tests for logging setup and the rate limit filter."""

import json
import logging
from pathlib import Path

import pytest

from cihost.config import LoggingConfig
from cihost.logging import BootstrapJsonFormatter, RateLimitFilter, setup_logging
from cihost.logging_schema import LogEvent


def _record(msg: str, level: int = logging.INFO, lineno: int = 10) -> logging.LogRecord:
    return logging.LogRecord("cihost.test", level, __file__, lineno, msg, None, None)


class TestRateLimitFilter:
    def test_duplicate_info_suppressed(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("Waiting for Docker daemon")) is True
        assert f.filter(_record("Waiting for Docker daemon")) is False

    def test_distinct_messages_pass(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("one")) is True
        assert f.filter(_record("two")) is True

    def test_warnings_always_pass(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("gave up", logging.WARNING)) is True
        assert f.filter(_record("gave up", logging.WARNING)) is True

    def test_cache_bounded(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60, max_cache_size=150)
        for i in range(200):
            f.filter(_record(f"message {i}"))
        assert len(f._last_log) <= 150


class TestJsonFormatter:
    def test_standard_fields(self) -> None:
        formatter = BootstrapJsonFormatter(LoggingConfig(service_name="cihost-test"))
        record = _record("Docker is ready")
        record.event = LogEvent.RUNTIME_READY

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "Docker is ready"
        assert payload["level"] == "INFO"
        assert payload["service"] == "cihost-test"
        assert payload["event"] == "runtime_ready"
        assert "timestamp" in payload


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_file_handler_added(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "bootstrap.log"
        setup_logging(LoggingConfig(file_path=log_file, syslog_address=None))

        logging.getLogger("cihost.test").warning("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "written to file" in log_file.read_text()

    def test_missing_syslog_socket_skipped(self, tmp_path: Path) -> None:
        setup_logging(
            LoggingConfig(file_path=None, syslog_address=str(tmp_path / "no-such-socket"))
        )
        assert len(logging.getLogger().handlers) == 1
