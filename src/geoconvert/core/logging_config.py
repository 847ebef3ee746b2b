"""
Centralized logging configuration for geoconvert.

Console output is colored in development. Deployments can add a rotating
log file, optionally as one JSON object per line for aggregation.

Contextual fields (dataset, request id...) are kept in a ``ContextVar``
so that concurrent requests on one event loop never see each other's
context; a single record factory copies them onto every record.
"""

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from geoconvert.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("geoconvert_log_context", default={})

# Loggers that are too verbose below WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "fiona", "uvicorn.access", "multipart")

CONSOLE_FORMAT = "%(levelname)s | %(asctime)s | %(name)s:%(lineno)d | %(message)s"
PLAIN_FORMAT = "%(levelname)s - %(asctime)s - %(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fields copied from the record into JSON output when present
EXTRA_FIELDS = (
    "dataset",
    "request_id",
    "http_method",
    "request_path",
    "operation",
    "duration_ms",
    "error_code",
    "status_code",
)


def _context_record_factory(base_factory: Any) -> Any:
    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = base_factory(*args, **kwargs)
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return record

    factory.geoconvert_context = True  # type: ignore[attr-defined]
    return factory


def _install_record_factory() -> None:
    current = logging.getLogRecordFactory()
    if not getattr(current, "geoconvert_context", False):
        logging.setLogRecordFactory(_context_record_factory(current))


class JSONFormatter(logging.Formatter):
    """
    Render records as single-line JSON documents.

    Known context fields are emitted as top-level keys next to the
    message; anything else passed through ``extra`` is ignored.
    """

    def format(self, record: logging.LogRecord) -> str:
        document: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                document[field] = value
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Copy so that other handlers see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def get_log_level(level_name: str) -> int:
    """
    Convert a level name such as ``"debug"`` to its logging constant.

    Unknown names map to INFO.
    """
    level = logging.getLevelName(level_name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if settings.environment == "development":
        handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(log_file: Path, level: int, json_logs: bool) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    # 10MB per file, 5 backups
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    handler.setLevel(level)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    json_logs: Optional[bool] = None,
    enable_console: bool = True,
) -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Level name; defaults to ``settings.log_level``, then to
            DEBUG in development and INFO elsewhere
        log_file: Rotating log file to write, if any
        json_logs: Write the log file as JSON lines; defaults to ``settings.json_logs``
        enable_console: Log to stdout
    """
    level_name = log_level or settings.log_level or (
        "DEBUG" if settings.environment == "development" else "INFO"
    )
    use_json = settings.json_logs if json_logs is None else json_logs
    level = get_log_level(level_name)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if enable_console:
        root.addHandler(_console_handler(level))
    if log_file:
        root.addHandler(_file_handler(log_file, level, use_json))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _install_record_factory()
    root.info(
        f"Logging initialized: level={level_name.upper()}, "
        f"environment={settings.environment}, json_logs={use_json}, "
        f"file={log_file if log_file else 'none'}"
    )


class LogContext:
    """
    Attach fields to every record logged inside the block.

    Contexts nest; inner fields win over outer ones.

    Usage:
        with LogContext(dataset="roads"):
            logger.info("Converting")  # record.dataset == "roads"
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        self._token = _log_context.set({**_log_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
