"""kvtxn utility modules."""

from .config import TransactionConfig, get_store_url, DEFAULT_MAX_ATTEMPTS
from .logging import (
    get_logger,
    get_adapter,
    get_metrics_logger,
    initialize_logging,
    reset_logging,
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    with_correlation_id
)
from .logging_config import (
    LoggingPresets,
    configure_from_environment,
    get_logging_config
)

__all__ = [
    # Configuration
    "TransactionConfig",
    "get_store_url",
    "DEFAULT_MAX_ATTEMPTS",
    # Logging functions
    "get_logger",
    "get_adapter",
    "get_metrics_logger",
    "initialize_logging",
    "reset_logging",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "with_correlation_id",
    # Logging configuration
    "LoggingPresets",
    "configure_from_environment",
    "get_logging_config"
]
