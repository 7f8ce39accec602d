"""
observability/logger.py — ClawMonitor Structured Logger

structlog routed through stdlib logging:
  - JSON lines to a rotating clawmonitor.log
  - console output, coloured for a terminal or JSON when json_format is set
  - every line carries timestamp, level, logger and the bound gateway context
  - values under secret-bearing keys (tokens, private keys, signatures) are
    masked before rendering

Usage:
    from observability.logger import get_logger, setup_logging

    setup_logging(level="INFO", log_dir="./data/logs")   # once, from main.py
    log = get_logger(__name__)
    log.info("gateway.ws_open", url="ws://127.0.0.1:18789")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

LOG_FILE_NAME = "clawmonitor.log"
REDACTED = "***"

# Keys whose values must never reach a log sink.
SECRET_KEYS = frozenset({
    "token",
    "auth_token",
    "device_token",
    "deviceToken",
    "private_key",
    "privateKeyPem",
    "signature",
})

# Third-party loggers that are chatty below INFO.
_NOISY_LOGGERS = ("websockets", "asyncio")


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: mask secret values, including one level down in dicts."""
    for key, value in event_dict.items():
        if key in SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (REDACTED if k in SECRET_KEYS and v else v) for k, v in value.items()
            }
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _build_handlers(
    level: int,
    log_dir: Optional[Path],
    console_output: bool,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=log_dir / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if not handlers:
        handlers.append(logging.NullHandler())
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path | None = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating log file; None disables it.
        json_format:    Console emits JSON instead of the coloured dev format.
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of the log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handlers = _build_handlers(
        numeric_level,
        Path(log_dir).expanduser() if log_dir is not None else None,
        console_output,
        max_bytes,
        backup_count,
    )

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.INFO))

    shared = _shared_processors()
    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    for handler in handlers:
        # the log file is always JSON, whatever the console shows
        renderer = (
            structlog.processors.JSONRenderer()
            if isinstance(handler, logging.FileHandler)
            else console_renderer
        )
        handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        ))


def get_logger(name: str = "clawmonitor", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="poller")
        log.info("poller.snapshot", kind="sessions")
        # → {"event": "poller.snapshot", "kind": "sessions",
        #    "component": "poller", "logger": "monitor.poller", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_gateway(url: str, device_id: str) -> None:
    """
    Bind gateway context to all subsequent log calls in this async context.

    Call once after the connection is built so every line from the poller,
    the store and the connection carries the target and device.
    """
    structlog.contextvars.bind_contextvars(gateway_url=url, device_id=device_id)


def clear_context() -> None:
    """Clear bound context vars (used on shutdown and between tests)."""
    structlog.contextvars.clear_contextvars()
