"""Structured logging configuration."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, List

import structlog
from structlog.types import EventDict, Processor

STDERR_LOG_LEVEL = "INFO"
IGNORED_LOGGERS = [
    "mcp.server.lowlevel",
    "mcp.server.stdio",
    "asyncio",
]
CALLER_KEYS = ("module", "line", "file")


def add_timestamp(_, __, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to the event dict."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def rename_caller_info(_, __, event_dict: EventDict) -> EventDict:
    """Shorten callsite keys added by structlog."""
    if "func_name" in event_dict:
        event_dict["module"] = event_dict.pop("func_name")
    if "lineno" in event_dict:
        event_dict["line"] = event_dict.pop("lineno")
    if "filename" in event_dict:
        event_dict["file"] = event_dict.pop("filename")
    return event_dict


def level_filter(logger: Any, name: str, event_dict: EventDict) -> EventDict:
    """Drop records below STDERR_LOG_LEVEL and records from noisy loggers."""
    logger_name = getattr(logger, "name", "")
    if any(logger_name.startswith(ignored) for ignored in IGNORED_LOGGERS):
        raise structlog.DropEvent

    level_no = logging.getLevelName(event_dict.get("level", name).upper())
    if isinstance(level_no, int) and level_no < logging.getLevelName(STDERR_LOG_LEVEL):
        raise structlog.DropEvent
    return event_dict


class CompactJSONRenderer:
    """Single-line JSON renderer with minimal output."""
    def __call__(self, _: Any, __: str, event_dict: EventDict) -> str:
        items = {
            "ts": event_dict.pop("timestamp", None),
            "lvl": event_dict.pop("level", "???"),
            "msg": event_dict.pop("event", ""),
            **{k: v for k, v in event_dict.items() if k in CALLER_KEYS},
        }
        if other := {k: v for k, v in event_dict.items() if k not in CALLER_KEYS}:
            items["data"] = other
        return json.dumps(items, separators=(",", ":"), default=str)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging for the application.

    Everything goes to STDERR because the MCP stdio transport owns STDOUT:
    - non-interactive: compact JSON, filtered by level & ignored loggers
    - interactive: colored console output
    """
    global STDERR_LOG_LEVEL
    STDERR_LOG_LEVEL = level.upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, STDERR_LOG_LEVEL),
    )

    json_processors: List[Processor] = [
        structlog.stdlib.add_log_level,
        level_filter,
        add_timestamp,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FILENAME,
            }
        ),
        rename_caller_info,
        structlog.processors.format_exc_info,
        CompactJSONRenderer(),
    ]

    console_processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ]

    structlog.configure(
        processors=console_processors if sys.stderr.isatty() else json_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
