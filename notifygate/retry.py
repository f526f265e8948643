"""Deadline and retry policy for calls into the delivery provider."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from notifygate.errors import DependencyFailure, Timeout
from notifygate.observability import get_logger
from notifygate.provider import ProviderError, ProviderTimeout, ProviderUnavailable

T = TypeVar("T")

logger = get_logger("notifygate.retry")

DEFAULT_MAX_WORKERS = 16


@dataclass(frozen=True)
class RetryPolicy:
    """``timeout`` is the per-attempt deadline in seconds (None waits forever)."""

    max_attempts: int = 3
    backoff: float = 0.2
    max_backoff: float = 2.0
    timeout: Optional[float] = 10.0

    def delay(self, attempt: int) -> float:
        return min(self.max_backoff, self.backoff * (2 ** (attempt - 1)))


NO_RETRY = RetryPolicy(max_attempts=1, timeout=None)


def safe_to_retry(error: ProviderError) -> bool:
    """Default predicate: retry errors the provider flagged as transient.

    A timeout is not retried: the attempt may still complete on the provider
    side, and repeating it could leave a second provider-side effect.
    """
    return error.retryable and not isinstance(error, ProviderTimeout)


def only_unavailable(error: ProviderError) -> bool:
    """Retry predicate for non-idempotent calls: retry only if nothing was attempted."""
    return isinstance(error, ProviderUnavailable)


class ProviderCaller:
    """Runs provider calls under a RetryPolicy on its own worker pool.

    Deadlines need a worker thread; the pool is created on first use and
    shut down by ``close``.
    """

    def __init__(self, policy: RetryPolicy | None = None, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.policy = policy or RetryPolicy()
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                raise RuntimeError("provider caller is closed")
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="notifygate-provider"
                )
            return self._executor

    def close(self) -> None:
        """Stop accepting calls; queued attempts are cancelled, running ones are not waited for."""
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def run_with_deadline(
        self,
        fn: Callable[[], T],
        on_late_result: Optional[Callable[[T], None]] = None,
    ) -> T:
        """Run ``fn`` within the policy's deadline, raising ProviderTimeout when it passes.

        A timed-out attempt keeps running; if it later succeeds its result goes
        to ``on_late_result`` so the caller can undo the provider-side effect.
        """
        timeout = self.policy.timeout
        if timeout is None:
            return fn()
        future = self._pool().submit(fn)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            if not future.cancel() and on_late_result is not None:
                future.add_done_callback(lambda f: self._reconcile(f, on_late_result))
            raise ProviderTimeout(f"no response within {timeout:g}s") from None

    @staticmethod
    def _reconcile(future: Future, on_late_result: Callable) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        try:
            on_late_result(future.result())
        except Exception as e:
            logger.exception("late_result_reconcile_failed", extra={"error": str(e)})

    def call(
        self,
        operation: str,
        fn: Callable[[], T],
        retry_if: Callable[[ProviderError], bool] = safe_to_retry,
        deadline: bool = True,
        on_late_result: Optional[Callable[[T], None]] = None,
    ) -> T:
        """Run ``fn`` under the policy, translating provider errors to GatewayErrors.

        Errors for which ``retry_if`` is true are retried with exponential backoff
        until attempts run out. The final error becomes ``Timeout`` or
        ``DependencyFailure`` carrying the provider's retryable flag. With
        ``deadline=False`` the attempt is not bounded here (``fn`` bounds its own
        sub-calls).
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if deadline:
                    return self.run_with_deadline(fn, on_late_result)
                return fn()
            except ProviderError as e:
                if retry_if(e) and attempt < self.policy.max_attempts:
                    delay = self.policy.delay(attempt)
                    logger.warning(
                        "provider_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "delay_sec": delay,
                            "error": str(e),
                        },
                    )
                    time.sleep(delay)
                    continue
                logger.error(
                    "provider_failed",
                    extra={"operation": operation, "attempts": attempt, "error": str(e)},
                )
                if isinstance(e, ProviderTimeout):
                    raise Timeout(f"{operation}: {e}") from e
                raise DependencyFailure(f"{operation}: {e}", retryable=e.retryable) from e
