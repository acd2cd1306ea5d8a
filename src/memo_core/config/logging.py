# memo_core/config/logging.py
"""
Logging setup for memo-core.

Every handler installed here carries the secret redaction filter: MCP server
configs hold bearer tokens and header values, and failed transport connects
tend to echo them back in exception text.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from memo_core.config.defaults import DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_MAX_BYTES
from memo_core.config.env_vars import EnvVar, get_env

ROOT_LOGGER_NAME = "memo_core"

# Loggers that emit one line per JSON-RPC frame or socket event at DEBUG
NOISY_LOGGERS = ("mcp", "httpx", "httpcore", "anyio", "asyncio")


# ── Redaction ────────────────────────────────────────────────────────────────

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(bearer\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\bsk-[\w-]{10,}"), "[REDACTED_API_KEY]"),
    (re.compile(r"(api[_-]?key\s*[:=]\s*)(['\"]?)[^\s'\",}]+\2", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(['\"]?access_token['\"]?\s*[:=]\s*['\"])[^'\"]+", re.IGNORECASE), r"\1[REDACTED]"),
    # bearer values are already handled above; this catches Basic and raw tokens
    (re.compile(r"(authorization\s*[:=]\s*)(?!bearer\b)\w+(?:\s+[^\s'\",}]+)?", re.IGNORECASE), r"\1[REDACTED]"),
)


def redact(text: str) -> str:
    """Mask credentials in ``text``."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Rewrites each record's message with credentials masked. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            # interpolate first so secrets passed as %s arguments are caught
            record.msg, record.args = redact(record.getMessage()), None
        elif isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


secret_filter = SecretRedactingFilter()


# ── Formatters ───────────────────────────────────────────────────────────────


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_line: bool = False):
        super().__init__()
        self.include_line = include_line

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.include_line:
            payload["line"] = record.lineno
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


_TEXT_FORMATS = {
    "simple": "%(levelname)-8s %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s",
}


def _make_formatter(format_style: str) -> logging.Formatter:
    if format_style == "json":
        return JsonLineFormatter()
    try:
        return logging.Formatter(_TEXT_FORMATS[format_style])
    except KeyError:
        raise ValueError(f"Unknown log format: {format_style}") from None


# ── Setup ────────────────────────────────────────────────────────────────────


def _resolve_level(level: str | None, quiet: bool, verbose: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG

    name = (level or get_env(EnvVar.LOG_LEVEL) or "WARNING").strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid log level: {name}")
    return resolved


def _rotating_file_handler(log_file: str) -> RotatingFileHandler:
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        path,
        maxBytes=DEFAULT_LOG_MAX_BYTES,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JsonLineFormatter(include_line=True))
    return handler


def setup_logging(
    level: str | None = None,
    quiet: bool = False,
    verbose: bool = False,
    format_style: str = "simple",
    log_file: str | None = None,
) -> None:
    """
    (Re)configure the root logger.

    Args:
        level: Level name; falls back to ``MEMO_LOG_LEVEL``, then WARNING
        quiet: Errors only (wins over ``verbose``)
        verbose: Debug output
        format_style: ``simple``, ``detailed`` or ``json`` for the console
        log_file: Also write JSON lines at DEBUG to this rotating file
    """
    log_level = _resolve_level(level, quiet, verbose)
    formatter = _make_formatter(format_style)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(formatter)

    handlers: list[logging.Handler] = [console]
    if log_file:
        handlers.append(_rotating_file_handler(log_file))

    for handler in handlers:
        handler.addFilter(secret_filter)
        root.addHandler(handler)

    # the file handler records DEBUG regardless of the console level
    root.setLevel(logging.DEBUG if log_file else log_level)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(logging.DEBUG if log_file else log_level)

    noisy_level = logging.NOTSET if log_level <= logging.DEBUG else logging.ERROR
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``memo_core`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
