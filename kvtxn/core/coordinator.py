"""
Transaction coordinator: the optimistic retry loop.

Each attempt opens a fresh watch session, runs the user's function against a
fresh ``TransactionContext`` and commits the staged writes atomically. An
attempt that loses a race is retried immediately, up to the attempt budget.
The function may therefore run several times and must not have side effects
outside the context that are unsafe to repeat.
"""

import functools
import inspect
import time
import uuid
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

from typing_extensions import Concatenate, ParamSpec, TypeAlias

from kvtxn.codec.base import BaseCodec
from kvtxn.codec.json_codec import JSONCodec
from kvtxn.core.context import TransactionContext
from kvtxn.exceptions import ConflictError, StoreConnectionError
from kvtxn.store.base import BaseStoreAdapter
from kvtxn.utils.config import TransactionConfig
from kvtxn.utils.logging import get_logger, get_metrics_logger, with_correlation_id
from kvtxn.utils.validation import validate_max_attempts

T = TypeVar("T")
P = ParamSpec("P")
R = TypeVar("R")
TransactionFunc: TypeAlias = Callable[[TransactionContext], Union[Awaitable[T], T]]

logger = get_logger(__name__)

DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (Exception,)
CONFLICT_RETRY_ON: Tuple[Type[BaseException], ...] = (ConflictError, StoreConnectionError)


class TransactionCoordinator:
    """
    Runs functions as optimistic transactions against a store adapter.

    Args:
        store: The store adapter shared by every transaction.
        codec: Value codec (defaults to ``JSONCodec``).
        max_attempts: Attempt budget; overrides ``config.max_attempts``.
        retry_on: Exception types that trigger another attempt. Defaults to
            every ``Exception``, or to conflicts and connection failures only
            when ``config.retry_business_errors`` is off.
        config: Transaction settings.
    """

    def __init__(
        self,
        store: BaseStoreAdapter,
        codec: Optional[BaseCodec] = None,
        max_attempts: Optional[int] = None,
        retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
        config: Optional[TransactionConfig] = None,
    ):
        self.store = store
        self.codec = codec or JSONCodec()
        self.config = config or TransactionConfig()
        self.max_attempts = self.config.max_attempts if max_attempts is None else max_attempts
        validate_max_attempts(self.max_attempts)

        if retry_on is not None:
            self.retry_on = tuple(retry_on)
        elif self.config.retry_business_errors:
            self.retry_on = DEFAULT_RETRY_ON
        else:
            self.retry_on = CONFLICT_RETRY_ON

        self._metrics = get_metrics_logger()

    async def execute(self, fn: TransactionFunc) -> Any:
        """
        Run ``fn`` as a transaction.

        Args:
            fn: Callable taking a ``TransactionContext``; may be a coroutine
                function. Its return value is returned once its writes commit.

        Returns:
            The return value of the attempt that committed.

        Raises:
            The last exception seen, unchanged, when the attempt budget is
            exhausted; any non-retryable exception immediately.
        """
        with with_correlation_id(f"txn-{uuid.uuid4().hex[:12]}") as transaction_id:
            last_exception: Optional[BaseException] = None

            for attempt in range(1, self.max_attempts + 1):
                start = time.perf_counter()
                self._metrics.log_operation_start("transaction_attempt", attempt=attempt)
                try:
                    result = await self._run_attempt(fn, attempt)
                except self.retry_on as e:
                    last_exception = e
                    self._metrics.log_operation_end(
                        "transaction_attempt", time.perf_counter() - start, success=False,
                        attempt=attempt, error_type=type(e).__name__
                    )
                    if isinstance(e, ConflictError):
                        self._metrics.log_conflict(attempt, self.max_attempts)
                    if attempt < self.max_attempts:
                        logger.warning(
                            "Transaction attempt %s/%s failed: %s. Retrying...",
                            attempt,
                            self.max_attempts,
                            str(e),
                        )
                    continue
                except Exception as e:
                    self._metrics.log_operation_end(
                        "transaction_attempt", time.perf_counter() - start, success=False,
                        attempt=attempt, error_type=type(e).__name__
                    )
                    logger.info(
                        "Transaction aborted by non-retryable error",
                        extra={"attempt": attempt, "error_type": type(e).__name__},
                    )
                    raise

                self._metrics.log_operation_end(
                    "transaction_attempt", time.perf_counter() - start, success=True, attempt=attempt
                )
                return result

            logger.error(
                "Max retries reached in transaction %s after %s attempts. Last error: %s",
                transaction_id,
                self.max_attempts,
                str(last_exception),
            )
            raise last_exception

    async def _run_attempt(self, fn: TransactionFunc, attempt: int) -> Any:
        async with self.store.session() as session:
            context = TransactionContext(session, self.codec, attempt=attempt)
            try:
                result = fn(context)
                if inspect.isawaitable(result):
                    result = await result
                writes = context.pending_writes()
                await session.commit(writes)
                logger.debug("Transaction committed", extra={
                    "attempt": attempt,
                    "written_keys": list(writes),
                })
                return result
            finally:
                context.close()

    def transactional(
        self, func: Callable[Concatenate[TransactionContext, P], Union[Awaitable[R], R]]
    ) -> Callable[P, Awaitable[R]]:
        """
        Decorator running ``func(tx, *args, **kwargs)`` through ``execute``.

        The decorated function is called with the remaining arguments only:

            @coordinator.transactional
            async def transfer(tx, src, dst, amount): ...

            await transfer("a", "b", 10)
        """
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            return await self.execute(lambda tx: func(tx, *args, **kwargs))

        return wrapper
