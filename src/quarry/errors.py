"""Exception hierarchy for Quarry."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class QuarryError(Exception):
    """Base exception for all Quarry errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(QuarryError):
    """Configuration validation or resolution failed."""


class InvalidArgumentError(QuarryError):
    """A request was malformed before any remote call was made."""


class OperationCancelledError(QuarryError):
    """The caller's cancellation signal stopped a call between attempts."""


class WarehouseError(QuarryError):
    """A remote warehouse call failed.

    Transport exceptions never reach callers directly: they are translated
    into this type (or a subclass) and kept as ``__cause__`` for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        reason: str | None = None,
        retry_after_s: float | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.reason = reason
        self.retry_after_s = retry_after_s
        self.operation = operation

    @property
    def cause(self) -> BaseException | None:
        """The underlying failure, if any."""
        return self.__cause__


class NotFoundError(WarehouseError):
    """The remote resource does not exist (HTTP 404)."""


class RateLimitError(WarehouseError):
    """Rate limit or quota exceeded."""


class RetryExhaustedError(WarehouseError):
    """Transient failures consumed the whole retry budget.

    The operation may or may not have taken effect remotely.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        elapsed_s: float,
        hint: str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
        retry_after_s: float | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=True,
            status_code=status_code,
            reason=reason,
            retry_after_s=retry_after_s,
            operation=operation,
        )
        self.attempts = attempts
        self.elapsed_s = elapsed_s


class JobTimeoutError(WarehouseError):
    """Timed out waiting for a job; the job may still be running remotely."""

    def __init__(
        self,
        message: str,
        *,
        job_id: object,
        polls: int,
        elapsed_s: float,
        hint: str | None = None,
    ) -> None:
        super().__init__(
            message, hint=hint, retryable=False, operation="query.wait"
        )
        self.job_id = job_id
        self.polls = polls
        self.elapsed_s = elapsed_s


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
