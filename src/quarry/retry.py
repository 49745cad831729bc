"""Synchronous retry with explicit error contracts.

Design goals:
- One executor for every remote call, so failure handling lives in one place
- Explicit state (policy + attempt counters + injected clock)
- No brittle substring matching for retry decisions
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from quarry.clock import SYSTEM_CLOCK
from quarry.errors import (
    InvalidArgumentError,
    OperationCancelledError,
    QuarryError,
    RetryExhaustedError,
)
from quarry.gateway._errors import (
    FailureCategory,
    categorize_failure,
    extract_retry_after_s,
    wrap_gateway_error,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    import threading

    from quarry.clock import Clock

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter.

    ``max_attempts`` counts the first attempt; ``None`` leaves the policy
    bounded by ``max_elapsed_s`` alone.
    """

    max_attempts: int | None = 6
    initial_delay_s: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_s: float = 32.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = 50.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts is not None and self.max_attempts < 1:
            raise InvalidArgumentError("RetryPolicy.max_attempts must be >= 1 or None")
        if self.initial_delay_s < 0:
            raise InvalidArgumentError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise InvalidArgumentError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise InvalidArgumentError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise InvalidArgumentError("RetryPolicy.max_elapsed_s must be >= 0 or None")
        if self.max_attempts is None and self.max_elapsed_s is None:
            raise InvalidArgumentError(
                "RetryPolicy needs max_attempts or max_elapsed_s",
                hint="An unbounded policy would retry forever.",
            )


# Waiting for a job is expected to take a while: no attempt cap, long budget.
QUERY_WAIT_POLICY = RetryPolicy(
    max_attempts=None,
    initial_delay_s=1.0,
    backoff_multiplier=2.0,
    max_delay_s=12.0,
    jitter=True,
    max_elapsed_s=12 * 60 * 60.0,
)


def is_retryable(exc: BaseException) -> bool:
    """Default classifier: True for transient gateway failures."""
    return categorize_failure(exc) is FailureCategory.TRANSIENT


def compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    """Return the sleep before retry number *retry_index* (1-based)."""
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return random.random() * base  # noqa: S311


def _cancelled(operation_name: str, attempt: int) -> OperationCancelledError:
    return OperationCancelledError(
        f"{operation_name} cancelled after {attempt} attempt(s)",
        hint="The cancellation event was set; no further attempts were made.",
    )


def _exhausted(
    exc: BaseException, *, operation_name: str, attempts: int, elapsed_s: float
) -> RetryExhaustedError:
    last = wrap_gateway_error(exc, operation=operation_name)
    return RetryExhaustedError(
        f"{operation_name} failed after {attempts} attempt(s) "
        f"in {elapsed_s:.2f}s: {last}",
        attempts=attempts,
        elapsed_s=elapsed_s,
        hint=last.hint,
        status_code=last.status_code,
        reason=last.reason,
        retry_after_s=last.retry_after_s,
        operation=operation_name,
    )


def run_with_retries(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    clock: Clock | None = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    cancel: threading.Event | None = None,
    operation_name: str = "call",
) -> T:
    """Run a zero-argument operation with bounded retries.

    Args:
        operation: The unit of remote work.
        policy: Attempt/elapsed budget and backoff curve.
        clock: Time source; defaults to the system clock.
        should_retry: Classifier deciding which failures are transient.
        cancel: Optional event checked before each attempt and while sleeping.
        operation_name: Label used in errors and log records.

    Returns:
        The operation's return value.

    Raises:
        WarehouseError: The first fatal failure, translated.
        RetryExhaustedError: Transient failures used up the budget.
        OperationCancelledError: *cancel* was set between attempts.
    """
    clock = clock or SYSTEM_CLOCK
    start = clock.monotonic()
    attempt = 0

    while True:
        if cancel is not None and cancel.is_set():
            raise _cancelled(operation_name, attempt)
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            if not should_retry(exc):
                if isinstance(exc, QuarryError):
                    raise
                raise wrap_gateway_error(exc, operation=operation_name) from exc

            elapsed = clock.monotonic() - start
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                err = _exhausted(
                    exc, operation_name=operation_name, attempts=attempt, elapsed_s=elapsed
                )
                logger.warning("%s", err)
                raise err from exc

            delay = compute_backoff_delay(policy, retry_index=attempt)
            retry_after = extract_retry_after_s(exc)
            if retry_after is not None:
                delay = max(delay, retry_after)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - elapsed
                if remaining <= 0:
                    err = _exhausted(
                        exc,
                        operation_name=operation_name,
                        attempts=attempt,
                        elapsed_s=elapsed,
                    )
                    logger.warning("%s", err)
                    raise err from exc
                delay = min(delay, remaining)

            logger.debug(
                "Retrying %s after attempt %d in %.3fs: %s",
                operation_name,
                attempt,
                delay,
                exc,
            )
            if not clock.sleep(delay, cancel):
                raise _cancelled(operation_name, attempt) from exc
