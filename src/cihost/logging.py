"""Logging configuration for cihost.

Supports two formats:
- text: Human-readable, what an operator tails on the host
- json: Structured logging for log shipping

The run log is duplicated to stdout, a fixed local file and the system
logger.
"""

import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pythonjsonlogger import json as jsonlogger

from cihost.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SYSLOG_FORMAT = "%(name)s[%(process)d]: %(levelname)s %(message)s"


class RateLimitFilter(logging.Filter):
    """Filter to prevent log storms from repeated messages.

    Suppresses duplicate log messages within a time window. Poll loops
    log the same "still waiting" line every few seconds; one per window
    is enough.

    Args:
        rate_limit_seconds: Minimum seconds between identical messages (default: 5)
        max_cache_size: Maximum number of messages to track (default: 1000)
    """

    def __init__(
        self,
        rate_limit_seconds: float = 5.0,
        max_cache_size: int = 1000,
        name: str = "",
    ) -> None:
        super().__init__(name)
        self._rate_limit = rate_limit_seconds
        self._max_cache = max_cache_size
        self._last_log: dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter duplicate messages within the rate limit window."""
        # WARNING and above always pass through
        if record.levelno >= logging.WARNING:
            return True

        key = f"{record.name}:{record.lineno}:{record.getMessage()}"

        now = time.monotonic()
        last_time = self._last_log.get(key)

        if last_time is not None and now - last_time < self._rate_limit:
            return False

        self._last_log[key] = now

        # Prevent unbounded growth of cache
        if len(self._last_log) > self._max_cache:
            oldest_keys = sorted(self._last_log, key=self._last_log.get)[:100]  # type: ignore[arg-type]
            for old_key in oldest_keys:
                del self._last_log[old_key]

        return True


class BootstrapJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with standard fields for log aggregation.

    Adds:
    - timestamp: ISO 8601 format with timezone
    - level: Log level name
    - logger: Logger name
    - service: Service identifier
    - pid: Process ID
    """

    def __init__(self, config: LoggingConfig, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service = config.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self._service
        log_record["pid"] = record.process

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def _build_handlers(config: LoggingConfig, formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    handlers.append(stream)

    if config.file_path is not None:
        config.file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.file_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # /dev/log is missing in minimal containers and during early boot
    if config.syslog_address and Path(config.syslog_address).exists():
        syslog = logging.handlers.SysLogHandler(address=config.syslog_address)
        syslog.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        handlers.append(syslog)

    return handlers


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging for the process.

    Args:
        config: Logging configuration settings.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter: logging.Formatter = BootstrapJsonFormatter(config)
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    rate_limit = RateLimitFilter(rate_limit_seconds=5.0)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in _build_handlers(config, formatter):
        handler.addFilter(rate_limit)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Suppress verbose HTTP client logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
