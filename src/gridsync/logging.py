"""Logging configuration using loguru.

Two output formats are available:
- one JSON object per line, for log collectors
- a colored single-line format for terminals

Lines emitted inside :func:`document_context` carry the document id, so a
resolve or save can be followed from its first probe to its last request.
"""

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC

from loguru import logger

document_id_ctx: ContextVar[str | None] = ContextVar("document_id", default=None)

_TERMINAL_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> {doc}<level>{message}</level>\n{exception}"
)


def _escape(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


def _json_formatter(record: dict) -> str:
    """Render a record as one JSON line."""
    entry = {
        "timestamp": record["time"].astimezone(UTC).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }
    document_id = document_id_ctx.get()
    if document_id:
        entry["document_id"] = document_id
    for key, value in record["extra"].items():
        entry.setdefault(key, value)

    exc = record["exception"]
    if exc:
        entry["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value) if exc.value else None,
        }

    # The returned text is itself a loguru format string
    return _escape(json.dumps(entry, default=str)) + "\n"


def _terminal_formatter(_record: dict) -> str:
    document_id = document_id_ctx.get()
    doc = _escape(f"[{document_id}] ").replace("<", r"\<") if document_id else ""
    return _TERMINAL_FORMAT.replace("{doc}", doc)


def setup_logging(json_logs: bool = False, log_level: str = "INFO") -> None:
    """Send gridsync logs to stderr.

    Args:
        json_logs: Emit JSON lines instead of the terminal format
        log_level: Lowest level that is written
    """
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, format=_json_formatter, level=log_level, colorize=False)
    else:
        logger.add(sys.stderr, format=_terminal_formatter, level=log_level, colorize=True)


@contextmanager
def document_context(document_id: str | None) -> Iterator[None]:
    """Tag every log line emitted inside the block with a document id."""
    token = document_id_ctx.set(document_id)
    try:
        yield
    finally:
        document_id_ctx.reset(token)


__all__ = [
    "document_context",
    "document_id_ctx",
    "logger",
    "setup_logging",
]
