"""
Logging configuration utilities for kvtxn.

Pre-configured logging setups for different environments.
"""
import os
from typing import Any, Dict, Optional

from .logging import initialize_logging, ThreadSafeLogManager


class LoggingPresets:
    """Pre-configured logging setups for different environments."""

    @staticmethod
    def development(log_file: Optional[str] = None) -> ThreadSafeLogManager:
        """Verbose JSON logs, including per-key cache hits and misses."""
        return initialize_logging(
            log_level="DEBUG",
            log_format="json",
            log_file=log_file,
            max_bytes=5 * 1024 * 1024,  # 5MB
            backup_count=3,
            include_correlation_id=True
        )

    @staticmethod
    def production(log_file: Optional[str] = None) -> ThreadSafeLogManager:
        """
        Production environment logging configuration.

        Args:
            log_file: Optional log file path

        Returns:
            Configured log manager
        """
        return initialize_logging(
            log_level="INFO",
            log_format="json",
            log_file=log_file,
            max_bytes=50 * 1024 * 1024,  # 50MB
            backup_count=10,
            include_correlation_id=True
        )

    @staticmethod
    def testing(log_file: Optional[str] = None) -> ThreadSafeLogManager:
        return initialize_logging(
            log_level="WARNING",
            log_format="text",
            log_file=log_file,
            max_bytes=1 * 1024 * 1024,  # 1MB
            backup_count=1,
            include_correlation_id=False
        )


def configure_from_environment() -> ThreadSafeLogManager:
    """
    Configure logging based on environment variables.

    Environment variables:
    - KVTXN_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - KVTXN_LOG_FORMAT: Log format (json, text)
    - KVTXN_LOG_FILE: Log file path
    - KVTXN_LOG_MAX_BYTES: Max file size in bytes
    - KVTXN_LOG_BACKUP_COUNT: Number of backup files
    - KVTXN_LOG_INCLUDE_CORRELATION_ID: Include correlation IDs (true/false)

    Returns:
        Configured log manager
    """
    log_level = os.getenv("KVTXN_LOG_LEVEL", "INFO")
    log_format = os.getenv("KVTXN_LOG_FORMAT", "json")
    log_file = os.getenv("KVTXN_LOG_FILE")
    max_bytes = int(os.getenv("KVTXN_LOG_MAX_BYTES", "10485760"))  # 10MB default
    backup_count = int(os.getenv("KVTXN_LOG_BACKUP_COUNT", "5"))
    include_correlation_id = os.getenv("KVTXN_LOG_INCLUDE_CORRELATION_ID", "true").lower() == "true"

    return initialize_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        max_bytes=max_bytes,
        backup_count=backup_count,
        include_correlation_id=include_correlation_id
    )


def get_logging_config() -> Dict[str, Any]:
    """
    Get current logging configuration.

    Returns:
        Dictionary with current logging configuration
    """
    from . import logging as kvtxn_logging

    manager = kvtxn_logging._log_manager
    if manager is None:
        return {"status": "not_initialized"}

    return {
        "status": "initialized",
        "log_level": manager.log_level,
        "log_format": manager.log_format,
        "log_file": manager.log_file,
        "max_bytes": manager.max_bytes,
        "backup_count": manager.backup_count,
        "include_correlation_id": manager.include_correlation_id,
        "initialized": manager._initialized
    }
