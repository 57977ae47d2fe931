"""Logging configuration for the workspace import bridge using structlog.

Console output is human-readable through Rich; an optional log file receives
one JSON object per line for machine parsing.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from workspace_import import __version__

APP_NAME = "workspace-import"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Substrings of payload keys whose values are never logged
SENSITIVE_FIELDS = {
    "token",
    "password",
    "secret",
    "api_key",
    "authorization",
    "access_token",
    "refresh_token",
    "personal_access_token",
    "secret_id",
}


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application name and version to every log entry."""
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """Formatter that writes already-rendered structlog messages as JSON lines.

    ANSI escape codes are stripped from the event message.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = _ANSI_PATTERN.sub("", record.getMessage())

        log_entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": message,
            "app": APP_NAME,
            "version": __version__,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def _file_handler(log_file: str, level: int, log_format: str) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setLevel(level)
    if log_format == "json":
        handler.setFormatter(JSONFileFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Safe to call again: handlers of an earlier call are replaced. The CLI
    configures logging once at startup and again after loading the
    configuration file.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: File output format ('json' or 'console'). Console output is
            always human-readable.
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG)
    """
    console_level = logging.getLevelName(level.upper())
    if not isinstance(console_level, int):
        console_level = logging.WARNING
    file_log_level = logging.getLevelName((file_level or "DEBUG").upper())
    if not isinstance(file_log_level, int):
        file_log_level = logging.DEBUG

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            level=console_level,
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    ]
    if log_file:
        handlers.append(_file_handler(log_file, file_log_level, log_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # Filter at the most verbose handler level so the file keeps its detail
    effective_level = min(console_level, file_log_level) if log_file else console_level

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(effective_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


def bind_run_context(run_id: str, tenant_id: str, **extra: Any) -> None:
    """Bind run identifiers to every log line emitted by the current task.

    asyncio tasks copy the context at creation, so binding inside a background
    run never leaks into the request that spawned it.
    """
    structlog.contextvars.bind_contextvars(run_id=run_id, tenant_id=tenant_id, **extra)


def _request_event(status_code: int) -> tuple[str, int]:
    if status_code < 300:
        return "api_request_success", logging.DEBUG
    if status_code == 429:
        return "api_request_rate_limited", logging.WARNING
    if status_code < 500:
        return "api_request_client_error", logging.WARNING
    return "api_request_server_error", logging.WARNING


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
    **extra: Any,
) -> None:
    """Log one completed API request; 4xx and 5xx responses log at WARNING."""
    event, level = _request_event(status_code)
    logger.log(
        level,
        event,
        method=method,
        url=url,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
        **extra,
    )


def log_import_progress(
    logger: structlog.stdlib.BoundLogger,
    phase: str,
    completed: int,
    total: int,
    **extra: Any,
) -> None:
    """Log how many projects of a run are done.

    Args:
        logger: Logger instance
        phase: Phase marker stored on the run
        completed: Projects finished so far
        total: Projects requested
        **extra: Additional context to log
    """
    logger.info(
        "import_progress",
        phase=phase,
        completed=completed,
        total=total,
        percentage=round(completed * 100 / total, 2) if total else 0,
        **extra,
    )


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy a decoded JSON payload with the values of sensitive keys redacted."""
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"
    if isinstance(payload, dict):
        return {
            key: "[REDACTED]" if _is_sensitive(key) else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """Render a payload as JSON, cut to ``max_size`` characters."""
    try:
        rendered = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        rendered = str(payload)

    if len(rendered) <= max_size:
        return rendered
    return f"{rendered[:max_size]}\n... [TRUNCATED - {len(rendered)} total chars]"
