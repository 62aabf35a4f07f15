"""
Structured JSON logging: timestamp, event_type, public_key, signature.

structlog with ISO timestamps, log level, and consistent keys so delivery and
scheduling events can be aggregated per account and per transaction signature.
All modules should use get_logger() and log snake_case event names.

Level and format are read from the environment (LOG_LEVEL, LOG_FORMAT, DEBUG)
on import and again on every configure_structlog() call. Loggers bound before
a reconfigure pick up the new level and renderer, so the runtime can apply
values that only appear once .env is loaded.

Uses only Python stdlib logging and structlog; no compound_stake imports to avoid circular imports.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

_LEVEL_BY_METHOD = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "msg": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "exception": logging.ERROR,
    "critical": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}

# Shared by every bound logger's processor chain
_active: dict[str, Any] = {}


def resolve_level() -> int:
    """LOG_LEVEL from env; DEBUG=1/true forces debug output."""
    if (os.getenv("DEBUG") or "").strip().lower() in ("1", "true"):
        return logging.DEBUG
    name = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    return getattr(logging, name, logging.INFO)


def resolve_format() -> str:
    """LOG_FORMAT from env: json (production) or console (local)."""
    return (os.getenv("LOG_FORMAT") or "json").strip().lower()


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Ensure timestamp is always present (ISO 8601)."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type for consistency."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _filter_by_level(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if _LEVEL_BY_METHOD.get(method_name, logging.INFO) < _active["level"]:
        raise structlog.DropEvent
    return event_dict


def _render(logger: Any, method_name: str, event_dict: dict[str, Any]) -> Any:
    return _active["renderer"](logger, method_name, event_dict)


def current_settings() -> tuple[int, str]:
    """The (level, format) pair in effect."""
    return _active["level"], _active["format"]


def configure_structlog(level: int | None = None, fmt: str | None = None) -> None:
    """Configure structlog: JSON (or console), timestamp, level, event_type. None re-reads the env."""
    _active["level"] = resolve_level() if level is None else level
    _active["format"] = resolve_format() if fmt is None else fmt
    if _active["format"] == "json":
        _active["renderer"] = structlog.processors.JSONRenderer()
    else:
        _active["renderer"] = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    structlog.configure(
        processors=[
            _filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _add_timestamp,
            _normalize_event,
            _render,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


# One-time configuration on first import
if not structlog.is_configured():
    configure_structlog()
elif not _active:
    _active.update(level=resolve_level(), format=resolve_format(), renderer=structlog.processors.JSONRenderer())


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("delivery_confirmed", signature=sig, operation="claim")

    Output (JSON): {"event_type": "delivery_confirmed", "signature": "...",
    "operation": "claim", "timestamp": "...", "level": "info", "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)
