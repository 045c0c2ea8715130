"""
Transaction configuration for kvtxn.

Holds the attempt budget and retry policy, and resolves the store connection
string from the environment.
"""
import os
from typing import Mapping, Optional

from kvtxn.exceptions import ConfigurationError, ValidationError
from kvtxn.utils.validation import validate_max_attempts

# Default transaction settings
DEFAULT_MAX_ATTEMPTS = 3
STORE_URL_ENV_VARS = ("KVTXN_STORE_URL", "REDIS_URL")

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


class TransactionConfig:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_business_errors: bool = True
    ):
        """
        Settings shared by every transaction run through a coordinator.

        Args:
            max_attempts: Number of attempts before giving up (at least 1).
            retry_business_errors: Retry when the transaction function itself
                raises. When off, only conflicts and connection failures are
                retried and any other error aborts at once.
        """
        validate_max_attempts(max_attempts)
        self.max_attempts = max_attempts
        self.retry_business_errors = bool(retry_business_errors)

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "TransactionConfig":
        """
        Build a config from environment variables.

        Environment variables:
        - KVTXN_MAX_ATTEMPTS: Attempt budget per transaction (default 3)
        - KVTXN_RETRY_BUSINESS_ERRORS: Retry on any exception (default true)
        """
        environ = os.environ if environ is None else environ
        raw_attempts = environ.get("KVTXN_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))
        try:
            max_attempts = int(raw_attempts)
        except ValueError as e:
            raise ConfigurationError(f"Invalid KVTXN_MAX_ATTEMPTS value: {raw_attempts!r}", e) from e

        raw_retry = environ.get("KVTXN_RETRY_BUSINESS_ERRORS", "true").strip().lower()
        if raw_retry in _TRUE_VALUES:
            retry_business_errors = True
        elif raw_retry in _FALSE_VALUES:
            retry_business_errors = False
        else:
            raise ConfigurationError(f"Invalid KVTXN_RETRY_BUSINESS_ERRORS value: {raw_retry!r}")

        try:
            return cls(max_attempts=max_attempts, retry_business_errors=retry_business_errors)
        except ValidationError as e:
            raise ConfigurationError("Invalid transaction configuration", e) from e

    def __repr__(self) -> str:
        return (f"TransactionConfig(max_attempts={self.max_attempts}, "
                f"retry_business_errors={self.retry_business_errors})")


def get_store_url(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve the store connection string.

    Looks at KVTXN_STORE_URL first, then REDIS_URL.

    Raises:
        ConfigurationError: If neither variable is set.
    """
    environ = os.environ if environ is None else environ
    for name in STORE_URL_ENV_VARS:
        url = environ.get(name)
        if url:
            return url
    raise ConfigurationError(
        f"No store URL configured; set one of {', '.join(STORE_URL_ENV_VARS)}"
    )
