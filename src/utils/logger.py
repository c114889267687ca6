"""
Structured logging for the Dorandoran chat pipeline.

Three sinks hang off one stdlib logger:

- stderr: coloured, human-readable lines (DEBUG when ``DEBUG`` is set, else INFO)
- logs/conversations.jsonl: JSON lines for turns and agent calls (INFO+)
- logs/errors.jsonl: JSON lines for failures (ERROR+)

Every record is stamped with the process id and whatever the current
request, subscription or turn context carries. Message content reaches the
logs only as masked previews, and only when content logging is enabled.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from pathlib import Path
from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROCESS_ID_LENGTH,
    PROJECT_ROOT,
    get_settings,
)
from utils.pii import mask_pii

LOGGER_NAME = "dorandoran-chat"
HIDDEN = "[HIDDEN]"

# Credentials that leak through exception strings; PII is handled by mask_pii
SECRET_PATTERNS = [
    (re.compile(r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(password|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]

CONVERSATION_FIELDS = "%(timestamp)s %(levelname)s %(message)s %(chatroom_id)s %(request_id)s %(agent)s %(tokens)s"
ERROR_FIELDS = "%(timestamp)s %(levelname)s %(name)s %(message)s %(chatroom_id)s %(request_id)s"


class _MinLevelFilter(logging.Filter):
    min_level = logging.NOTSET

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.min_level


class ConversationFilter(_MinLevelFilter):
    """Keeps DEBUG chatter out of the conversation log."""

    min_level = logging.INFO


class ErrorFilter(_MinLevelFilter):
    min_level = logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] logger - message`` with ANSI colours.

    uvicorn access records are re-rendered with a coloured status code.
    """

    RESET = "\x1b[0m"
    BOLD = "\x1b[1m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def _paint(self, text: str, color: str | None) -> str:
        return f"{color}{text}{self.RESET}" if color else text

    def _status_color(self, status_code: int) -> str:
        if status_code >= 500:
            return self.LEVEL_COLORS[logging.ERROR]
        if status_code >= 400:
            return self.LEVEL_COLORS[logging.WARNING]
        return self.LEVEL_COLORS[logging.INFO]

    def _access_line(self, record: logging.LogRecord) -> str:
        client, method, path, http_version, status = cast(tuple[Any, ...], record.args)
        painted_status = self._paint(str(status), self._status_color(int(status)))
        return f'{client} - "{self._paint(str(method), self.BOLD)} {path} HTTP/{http_version}" {painted_status}'

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, "%H:%M:%S")
        level = self._paint(f"[{record.levelname}]", self.LEVEL_COLORS.get(record.levelno))

        if record.name == "uvicorn.access" and isinstance(record.args, tuple) and len(record.args) == 5:
            return f"{record.asctime} {level} {record.name} - {self._access_line(record)}"

        line = f"{record.asctime} {level} {record.name} - {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_uvicorn_logging() -> None:
    """Send uvicorn's error and access logs through the coloured console format."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(
    path: Path,
    level_filter: logging.Filter,
    backup_count: int,
    fields: str,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=LOG_MAX_SIZE, backupCount=backup_count, encoding="utf-8"
    )
    handler.addFilter(level_filter)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(name: str = LOGGER_NAME, debug: bool | None = None) -> logging.Logger:
    """Attach the console and JSON-lines handlers to logger ``name``.

    Args:
        name: Logger name
        debug: Console verbosity; read from the ``DEBUG`` env var when None
    """
    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())

    configured = logging.getLogger(name)
    configured.setLevel(logging.DEBUG)
    configured.handlers = [
        console,
        _json_file_handler(
            log_dir / "conversations.jsonl", ConversationFilter(), LOG_BACKUP_COUNT_CONVERSATIONS, CONVERSATION_FIELDS
        ),
        _json_file_handler(log_dir / "errors.jsonl", ErrorFilter(), LOG_BACKUP_COUNT_ERRORS, ERROR_FIELDS),
    ]
    return configured


def redact(text: str) -> str:
    """Mask PII and credentials in text headed for the logs."""
    if not text:
        return text
    masked = mask_pii(text)
    for pattern, replacement in SECRET_PATTERNS:
        masked = pattern.sub(replacement, masked)
    return masked


def preview(text: str, limit: int = LOG_PREVIEW_LENGTH) -> str:
    """Single-line, redacted prefix of ``text``."""
    head = redact(text[:limit].replace("\n", " "))
    return f"{head}..." if len(text) > limit else head


class ChatLogger:
    """Pipeline-facing logger.

    Keyword arguments become structured fields on the record. Fields from the
    active request context fill in anything the caller did not pass.
    """

    def __init__(self, name: str = LOGGER_NAME):
        self.logger = setup_logging(name)
        self.process_id = uuid.uuid4().hex[:PROCESS_ID_LENGTH]

    def _fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        fields.setdefault("process_id", self.process_id)
        if ctx := get_request_context():
            for key, value in ctx.to_log_context().items():
                fields.setdefault(key, value)
        return fields

    def _emit(self, level: int, message: str, fields: dict[str, Any], exc_info: bool | BaseException = False) -> None:
        self.logger.log(level, message, extra=self._fields(fields), exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, exc_info: bool | BaseException = False, **fields: Any) -> None:
        self._emit(logging.ERROR, message, fields, exc_info=exc_info)

    def _content_logging_enabled(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # settings failed validation; never log content in that state
            return False

    def log_conversation_turn(
        self,
        chatroom_id: str,
        user_input: str,
        response: str,
        duration_ms: float | None = None,
        tokens_used: int | None = None,
        pipeline: str = "multi_agent",
    ) -> None:
        """One completed turn. ``pipeline`` is "multi_agent" or "single_agent"."""
        show_content = self._content_logging_enabled()
        user_text = preview(user_input) if show_content else HIDDEN
        reply_text = preview(response) if show_content else HIDDEN

        summary = f"Turn ({pipeline}) user: {user_text} | reply: {reply_text}"
        if duration_ms:
            summary += f" [{duration_ms:.0f}ms]"
        if tokens_used:
            summary += f" [{tokens_used} tokens]"

        fields: dict[str, Any] = {
            "conversation_turn": True,
            "chatroom_id": chatroom_id,
            "pipeline": pipeline,
            "chars_input": len(user_input),
            "chars_response": len(response),
            "content_logging": show_content,
        }
        if duration_ms is not None:
            fields["ms"] = int(duration_ms)
        if tokens_used is not None:
            fields["tokens"] = tokens_used
        self._emit(logging.INFO, summary, fields)

    def log_agent_call(
        self,
        agent: str,
        chatroom_id: str | None,
        duration_ms: float,
        outcome: str,
        **details: Any,
    ) -> None:
        """One agent invocation; ``outcome`` is "success", "default" or "error"."""
        level = logging.WARNING if outcome == "error" else logging.INFO
        fields = {"agent": agent, "chatroom_id": chatroom_id, "ms": int(duration_ms), "outcome": outcome, **details}
        self._emit(level, f"Agent {agent}: {outcome} after {duration_ms:.0f}ms", fields)


logger = ChatLogger()
