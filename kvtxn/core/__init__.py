"""Transaction coordinator and per-attempt context."""

from .context import ABSENT, TransactionContext
from .coordinator import CONFLICT_RETRY_ON, DEFAULT_RETRY_ON, TransactionCoordinator

__all__ = [
    "ABSENT",
    "CONFLICT_RETRY_ON",
    "DEFAULT_RETRY_ON",
    "TransactionContext",
    "TransactionCoordinator"
]
