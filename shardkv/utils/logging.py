"""
Structured logging for shardkv.

Loggers are plain ``logging`` loggers under the ``shardkv`` namespace. Calling
``initialize_logging`` attaches console and optional rotating file handlers to
the ``shardkv`` logger, emitting JSON or text. A correlation id kept in a
``ContextVar`` ties together every record produced by one lock resolution call,
even when many calls run concurrently on the same event loop.
"""
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "shardkv"

correlation_id: ContextVar[Optional[str]] = ContextVar("shardkv_correlation_id", default=None)

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "exc_info", "exc_text",
    "stack_info", "taskName", "extra_fields", "correlation_id", "message",
})


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def __init__(self, include_correlation_id: bool = True):
        super().__init__()
        self.include_correlation_id = include_correlation_id

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_correlation_id:
            current = correlation_id.get() or getattr(record, "correlation_id", None)
            if current:
                log_entry["correlation_id"] = current

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(extra_fields)

        # Plain ``extra={...}`` keys land on the record itself.
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED_ATTRS:
                continue
            if isinstance(value, (str, int, float, bool, list, dict, type(None))):
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CorrelationIdFilter(logging.Filter):
    """Copies the current correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = correlation_id.get()
        if current:
            record.correlation_id = current
        return True


class ShardKVLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that attaches a fixed set of structured fields.

    ``bind`` returns a new adapter with more fields, leaving this one intact.
    """

    def __init__(self, logger: logging.Logger, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__(logger, {})
        self.extra_fields = dict(extra_fields or {})

    def process(self, msg, kwargs):
        if self.extra_fields:
            extra = kwargs.setdefault("extra", {})
            extra["extra_fields"] = {**self.extra_fields, **extra.get("extra_fields", {})}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ShardKVLoggerAdapter":
        return ShardKVLoggerAdapter(self.logger, {**self.extra_fields, **fields})


class MetricsLogger:
    """Emits operation and cache events as structured records."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_operation_start(self, operation: str, **kwargs: Any) -> None:
        self.logger.debug(
            "Operation started",
            extra={"extra_fields": {"event_type": "operation_start", "operation": operation, **kwargs}},
        )

    def log_operation_end(self, operation: str, duration: float, success: bool = True, **kwargs: Any) -> None:
        self.logger.info(
            "Operation completed",
            extra={
                "extra_fields": {
                    "event_type": "operation_end",
                    "operation": operation,
                    "duration_seconds": duration,
                    "success": success,
                    **kwargs,
                }
            },
        )

    def log_cache_hit(self, cache_type: str, key: Any, **kwargs: Any) -> None:
        self.logger.debug(
            "Cache hit",
            extra={"extra_fields": {"event_type": "cache_hit", "cache_type": cache_type, "cache_key": key, **kwargs}},
        )

    def log_cache_miss(self, cache_type: str, key: Any, **kwargs: Any) -> None:
        self.logger.debug(
            "Cache miss",
            extra={"extra_fields": {"event_type": "cache_miss", "cache_type": cache_type, "cache_key": key, **kwargs}},
        )


class LogManager:
    """
    Owns the handlers attached to the ``shardkv`` logger.

    Only the package logger is configured; the root logger and the host
    application's handlers are left alone.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_format: str = "json",
        log_file: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        include_correlation_id: bool = True,
    ):
        """
        Initialize the log manager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_format: Log format ('json' or 'text')
            log_file: Path to a log file (optional)
            max_bytes: Maximum size of the log file before rotation
            backup_count: Number of rotated files to keep
            include_correlation_id: Whether to include correlation IDs
        """
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {log_level}")
        if log_format not in ("json", "text"):
            raise ValueError(f"Unknown log format: {log_format}")

        self.log_level = level
        self.log_format = log_format
        self.log_file = log_file
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.include_correlation_id = include_correlation_id
        self._handlers = []

        self.logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.metrics = MetricsLogger(logging.getLogger(f"{ROOT_LOGGER_NAME}.metrics"))
        self._configure()

    def _formatter(self) -> logging.Formatter:
        if self.log_format == "json":
            return StructuredFormatter(self.include_correlation_id)
        return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def _add_handler(self, handler: logging.Handler) -> None:
        handler.setLevel(self.log_level)
        handler.setFormatter(self._formatter())
        if self.include_correlation_id:
            handler.addFilter(CorrelationIdFilter())
        self.logger.addHandler(handler)
        self._handlers.append(handler)

    def _configure(self) -> None:
        self.logger.setLevel(self.log_level)
        self._add_handler(logging.StreamHandler(sys.stderr))

        if self.log_file:
            log_path = Path(self.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._add_handler(
                logging.handlers.RotatingFileHandler(
                    log_path,
                    maxBytes=self.max_bytes,
                    backupCount=self.backup_count,
                )
            )

    def shutdown(self) -> None:
        """Detach and close every handler this manager installed."""
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []


_log_manager: Optional[LogManager] = None
_log_manager_lock = threading.RLock()


def initialize_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    include_correlation_id: bool = True,
) -> LogManager:
    """
    Configure the ``shardkv`` logger, replacing any earlier configuration.

    Returns:
        The active log manager.
    """
    global _log_manager

    with _log_manager_lock:
        if _log_manager is not None:
            _log_manager.shutdown()
        _log_manager = LogManager(
            log_level=log_level,
            log_format=log_format,
            log_file=log_file,
            max_bytes=max_bytes,
            backup_count=backup_count,
            include_correlation_id=include_correlation_id,
        )
        return _log_manager


def get_log_manager() -> Optional[LogManager]:
    with _log_manager_lock:
        return _log_manager


def get_logger(name: str) -> logging.Logger:
    """Get a logger; module names outside ``shardkv`` are nested under it."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def get_adapter(name: str, **extra_fields: Any) -> ShardKVLoggerAdapter:
    """Get a logger adapter that adds ``extra_fields`` to every record."""
    return ShardKVLoggerAdapter(get_logger(name), extra_fields)


def get_metrics_logger() -> MetricsLogger:
    with _log_manager_lock:
        if _log_manager is not None:
            return _log_manager.metrics
    return MetricsLogger(get_logger(f"{ROOT_LOGGER_NAME}.metrics"))


def set_correlation_id(value: str) -> Token:
    return correlation_id.set(value)


def get_correlation_id() -> Optional[str]:
    return correlation_id.get()


def clear_correlation_id() -> None:
    correlation_id.set(None)


class CorrelationIdContext:
    """Sets a correlation id for the duration of a ``with`` block."""

    def __init__(self, correlation_id_value: Optional[str] = None):
        self.correlation_id_value = correlation_id_value or uuid.uuid4().hex
        self._token: Optional[Token] = None

    def __enter__(self) -> str:
        self._token = correlation_id.set(self.correlation_id_value)
        return self.correlation_id_value

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            correlation_id.reset(self._token)
            self._token = None


def with_correlation_id(correlation_id_value: Optional[str] = None) -> CorrelationIdContext:
    """
    Create a correlation ID context.

    Args:
        correlation_id_value: Correlation ID value (auto-generated if None)

    Returns:
        CorrelationIdContext instance
    """
    return CorrelationIdContext(correlation_id_value)
