"""
Structured logging system for kvtxn.

This module provides structured JSON logging, correlation IDs for tracing a
transaction across its attempts, and configurable log rotation. Importing
kvtxn never touches the root logger; call ``initialize_logging`` (or one of
the presets in ``logging_config``) to install handlers.
"""
import json
import logging
import logging.handlers
import sys
import threading
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Context variable for correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar('kvtxn_correlation_id', default=None)

_RESERVED_RECORD_KEYS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno',
    'pathname', 'filename', 'module', 'lineno',
    'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process',
    'getMessage', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'message', 'asctime', 'extra_fields', 'correlation_id'
])


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter.

    Each record becomes one JSON object with timestamp, level, logger,
    message, source location, the correlation ID when one is active, and any
    ``extra`` fields passed to the logging call.
    """

    def __init__(self, include_correlation_id: bool = True):
        super().__init__()
        self.include_correlation_id = include_correlation_id

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")

        log_entry: Dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if self.include_correlation_id:
            current_correlation_id = correlation_id.get()
            if current_correlation_id:
                log_entry["correlation_id"] = current_correlation_id
            elif getattr(record, 'correlation_id', None):
                log_entry["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        for key, value in record.__dict__.items():
            if key.startswith('_') or key in _RESERVED_RECORD_KEYS:
                continue
            if isinstance(value, (str, int, float, bool, list, dict, type(None))):
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class CorrelationIdFilter(logging.Filter):
    """Log filter that stamps the active correlation ID on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_correlation_id = correlation_id.get()
        if current_correlation_id:
            record.correlation_id = current_correlation_id
        return True


class KVTxnLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds a fixed correlation ID and structured fields.
    """

    def __init__(self, logger, correlation_id=None, extra_fields=None):
        super().__init__(logger, {})
        self.correlation_id = correlation_id
        self.extra_fields = extra_fields or {}

    def process(self, msg, kwargs):
        if self.correlation_id:
            kwargs.setdefault('extra', {})['correlation_id'] = self.correlation_id

        if self.extra_fields:
            kwargs.setdefault('extra', {})['extra_fields'] = self.extra_fields

        return msg, kwargs

    def bind(self, **kwargs):
        """Create a new adapter with additional context."""
        new_extra_fields = {**self.extra_fields, **kwargs}
        return KVTxnLoggerAdapter(self.logger, self.correlation_id, new_extra_fields)


class MetricsLogger:
    """
    Logger for transaction metrics: attempt timing, cache hits and conflicts.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_operation_start(self, operation: str, **kwargs):
        """
        Log the start of an operation.

        Args:
            operation: Name of the operation
            **kwargs: Additional operation metadata
        """
        self.logger.debug(
            "Operation started",
            extra={
                'extra_fields': {
                    'event_type': 'operation_start',
                    'operation': operation,
                    **kwargs
                }
            }
        )

    def log_operation_end(self, operation: str, duration: float, success: bool = True, **kwargs):
        """
        Log the end of an operation.

        Args:
            operation: Name of the operation
            duration: Duration in seconds
            success: Whether the operation was successful
            **kwargs: Additional operation metadata
        """
        self.logger.info(
            "Operation completed",
            extra={
                'extra_fields': {
                    'event_type': 'operation_end',
                    'operation': operation,
                    'duration_seconds': duration,
                    'success': success,
                    **kwargs
                }
            }
        )

    def log_cache_hit(self, cache_type: str, key: str, **kwargs):
        """Log a read served from the attempt cache."""
        self.logger.debug(
            "Cache hit",
            extra={
                'extra_fields': {
                    'event_type': 'cache_hit',
                    'cache_type': cache_type,
                    'cache_key': key,
                    **kwargs
                }
            }
        )

    def log_cache_miss(self, cache_type: str, key: str, **kwargs):
        """Log a read that had to go to the store."""
        self.logger.debug(
            "Cache miss",
            extra={
                'extra_fields': {
                    'event_type': 'cache_miss',
                    'cache_type': cache_type,
                    'cache_key': key,
                    **kwargs
                }
            }
        )

    def log_conflict(self, attempt: int, max_attempts: int, **kwargs):
        """Log an attempt aborted by a concurrent modification."""
        self.logger.info(
            "Transaction conflict",
            extra={
                'extra_fields': {
                    'event_type': 'conflict',
                    'attempt': attempt,
                    'max_attempts': max_attempts,
                    **kwargs
                }
            }
        )


class ThreadSafeLogManager:
    """
    Thread-safe centralized log manager for kvtxn.

    Owns the handler configuration installed on the root logger and hands
    out named loggers at the configured level.
    """

    def __init__(self,
                 log_level: str = "INFO",
                 log_format: str = "json",
                 log_file: Optional[str] = None,
                 max_bytes: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 include_correlation_id: bool = True):
        """
        Initialize the log manager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_format: Log format ('json' or 'text')
            log_file: Path to log file (optional)
            max_bytes: Maximum size of log file before rotation
            backup_count: Number of backup files to keep
            include_correlation_id: Whether to include correlation IDs
        """
        self.log_level = getattr(logging, log_level.upper())
        self.log_format = log_format
        self.log_file = log_file
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.include_correlation_id = include_correlation_id

        self._lock = threading.RLock()
        self._initialized = False
        self._loggers: Dict[str, logging.Logger] = {}

        self._safe_initialize()

        self.logger = self.get_logger("kvtxn")
        self.metrics = MetricsLogger(self.get_logger("kvtxn.metrics"))

    def _safe_initialize(self):
        with self._lock:
            if not self._initialized:
                try:
                    self._configure_root_logger()
                except (OSError, ValueError) as e:
                    logging.basicConfig(level=self.log_level)
                    logging.error(f"Failed to initialize kvtxn logging: {e}")
                self._initialized = True

    def _build_formatter(self) -> logging.Formatter:
        if self.log_format == "json":
            return StructuredFormatter(self.include_correlation_id)
        return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    def _configure_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        formatter = self._build_formatter()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(formatter)
        if self.include_correlation_id:
            console_handler.addFilter(CorrelationIdFilter())
        root_logger.addHandler(console_handler)

        if self.log_file:
            try:
                Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    self.log_file,
                    maxBytes=self.max_bytes,
                    backupCount=self.backup_count
                )
                file_handler.setLevel(self.log_level)
                file_handler.setFormatter(formatter)
                if self.include_correlation_id:
                    file_handler.addFilter(CorrelationIdFilter())
                root_logger.addHandler(file_handler)
            except OSError as e:
                logging.error(f"Failed to configure file logging: {e}")

    def get_logger(self, name: str) -> logging.Logger:
        with self._lock:
            if name not in self._loggers:
                logger = logging.getLogger(name)
                logger.setLevel(self.log_level)
                self._loggers[name] = logger
            return self._loggers[name]

    def get_adapter(self, name: str, correlation_id: Optional[str] = None, **extra_fields) -> KVTxnLoggerAdapter:
        return KVTxnLoggerAdapter(self.get_logger(name), correlation_id, extra_fields)

    def shutdown(self):
        """Detach and close the handlers this manager installed."""
        with self._lock:
            root_logger = logging.getLogger()
            for handler in root_logger.handlers[:]:
                root_logger.removeHandler(handler)
                handler.close()
            for logger in self._loggers.values():
                logger.setLevel(logging.NOTSET)
            self._loggers.clear()
            self._initialized = False


# Global log manager instance
_log_manager: Optional[ThreadSafeLogManager] = None
_log_manager_lock = threading.RLock()


def initialize_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    include_correlation_id: bool = True,
    force: bool = False
) -> ThreadSafeLogManager:
    """
    Initialize the global logging system.

    Args:
        log_level: Logging level
        log_format: Log format ('json' or 'text')
        log_file: Path to log file
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup files to keep
        include_correlation_id: Whether to include correlation IDs
        force: Replace an already initialized configuration

    Returns:
        Configured log manager instance
    """
    global _log_manager

    with _log_manager_lock:
        if _log_manager is not None and force:
            _log_manager.shutdown()
            _log_manager = None
        if _log_manager is None:
            _log_manager = ThreadSafeLogManager(
                log_level=log_level,
                log_format=log_format,
                log_file=log_file,
                max_bytes=max_bytes,
                backup_count=backup_count,
                include_correlation_id=include_correlation_id
            )

    return _log_manager


def reset_logging():
    """Tear down the global configuration installed by ``initialize_logging``."""
    global _log_manager

    with _log_manager_lock:
        if _log_manager is not None:
            _log_manager.shutdown()
            _log_manager = None


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Falls back to a plain ``logging.getLogger`` when logging has not been
    initialized, so library imports leave the host application's setup alone.
    """
    with _log_manager_lock:
        if _log_manager is None:
            return logging.getLogger(name)
        return _log_manager.get_logger(name)


def get_adapter(name: str, correlation_id: Optional[str] = None, **extra_fields) -> KVTxnLoggerAdapter:
    """Get a logger adapter with correlation ID and extra fields."""
    return KVTxnLoggerAdapter(get_logger(name), correlation_id, extra_fields)


def get_metrics_logger() -> MetricsLogger:
    """Get the metrics logger."""
    with _log_manager_lock:
        if _log_manager is None:
            return MetricsLogger(logging.getLogger("kvtxn.metrics"))
        return _log_manager.metrics


def set_correlation_id(correlation_id_value: str):
    """Set the correlation ID for the current context."""
    correlation_id.set(correlation_id_value)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID."""
    return correlation_id.get()


def clear_correlation_id():
    """Clear the current correlation ID."""
    correlation_id.set(None)


class CorrelationIdContext:
    """
    Context manager binding a correlation ID for the duration of a block.
    """

    def __init__(self, correlation_id_value: Optional[str] = None):
        self.correlation_id_value = correlation_id_value or str(uuid.uuid4())
        self._token = None

    def __enter__(self):
        self._token = correlation_id.set(self.correlation_id_value)
        return self.correlation_id_value

    def __exit__(self, exc_type, exc_val, exc_tb):
        correlation_id.reset(self._token)


def with_correlation_id(correlation_id_value: Optional[str] = None):
    """
    Create a correlation ID context.

    Args:
        correlation_id_value: Correlation ID value (auto-generated if None)

    Returns:
        CorrelationIdContext instance
    """
    return CorrelationIdContext(correlation_id_value)
