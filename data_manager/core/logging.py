"""Secure structured logging for the data manager.

Features:
    - Sensitive data masking (passwords, keys in connection strings)
    - Home directory masking in store paths
    - JSON structured logging format
    - Migration run context ([run=xxx][store=yyy] prefixes)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

# Patterns to mask in logs
SENSITIVE_PATTERNS = [
    (re.compile(r'api[_-]?key["\']?\s*[:=]\s*["\']?[\w-]+', re.I), "api_key=***MASKED***"),
    (re.compile(r'password["\']?\s*[:=]\s*["\']?[^\s"\']+', re.I), "password=***MASKED***"),
]


def _home_pattern() -> tuple[re.Pattern[str], str] | None:
    try:
        home = str(Path.home())
    except RuntimeError:
        return None
    if not home or home == "/":
        return None
    return re.compile(re.escape(home)), "~"


def _get_run_context() -> tuple[str | None, str | None]:
    """Return (run_id, store_name) of the active migration run, if any."""
    from data_manager.core.tracing import get_current_context

    ctx = get_current_context()
    if ctx:
        return ctx.run_id, ctx.store_name
    return None, None


def _mask(message: str) -> str:
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    home = _home_pattern()
    if home is not None:
        message = home[0].sub(home[1], message)
    return message


class SecureFormatter(logging.Formatter):
    """Formatter that masks sensitive data and includes run context."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_run_context: bool = True,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.include_run_context = include_run_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, insert the run prefix and mask sensitive data."""
        message = super().format(record)

        if self.include_run_context:
            run_id, store_name = _get_run_context()
            if run_id:
                prefix = f"[run={run_id}][store={store_name}] "
                # "time - logger - LEVEL - message" -> prefix goes before message
                parts = message.split(" - ", 3)
                if len(parts) == 4:
                    message = f"{parts[0]} - {parts[1]} - {parts[2]} - {prefix}{parts[3]}"
                else:
                    message = prefix + message

        return _mask(message)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with run context."""

    def __init__(self, include_run_context: bool = True) -> None:
        super().__init__()
        self.include_run_context = include_run_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with sensitive data masked."""
        log_data: dict[str, str | None] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_run_context:
            run_id, store_name = _get_run_context()
            if run_id:
                log_data["run_id"] = run_id
                log_data["store"] = store_name

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return _mask(json.dumps(log_data))


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    mask_sensitive: bool = True,
    include_run_context: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        json_format: Use JSON format for structured logging.
        mask_sensitive: Mask sensitive data in logs.
        include_run_context: Include [run=xxx][store=yyy] in log messages.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = JSONFormatter(include_run_context=include_run_context)
    elif mask_sensitive:
        formatter = SecureFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            include_run_context=include_run_context,
        )
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
