"""Query results and waiting for query jobs to finish."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from quarry.errors import JobTimeoutError, RetryExhaustedError
from quarry.models import ErrorDetail, Row
from quarry.page import Page
from quarry.retry import run_with_retries

if TYPE_CHECKING:
    from collections.abc import Callable
    import threading

    from quarry.clock import Clock
    from quarry.ids import JobId
    from quarry.models import Schema
    from quarry.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResult(Page[Row]):
    """A page of query rows plus result-level statistics."""

    schema: Schema | None = None
    total_rows: int | None = None
    total_bytes_processed: int | None = None
    cache_hit: bool | None = None


@dataclass(frozen=True)
class QueryResponse:
    """State of a query job as reported by a single results request.

    ``result`` is only present once ``job_complete`` is True.
    """

    job_id: JobId
    job_complete: bool
    result: QueryResult | None = None
    etag: str | None = None
    num_dml_affected_rows: int | None = None
    execution_errors: tuple[ErrorDetail, ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.execution_errors)


class _JobIncomplete(Exception):
    """Internal signal: the job has not finished yet."""

    def __init__(self, response: QueryResponse) -> None:
        super().__init__(f"job {response.job_id} not complete")
        self.response = response


def _is_incomplete(exc: BaseException) -> bool:
    return isinstance(exc, _JobIncomplete)


def wait_for_query_results(
    poll: Callable[[], QueryResponse],
    *,
    job_id: JobId,
    policy: RetryPolicy,
    clock: Clock | None = None,
    cancel: threading.Event | None = None,
) -> QueryResponse:
    """Poll until the job completes or the wait budget runs out.

    Each ``poll`` is one results request, retried on its own under the call
    policy. Here only "not complete yet" is retried, with *policy*'s backoff.

    Raises:
        JobTimeoutError: The wait budget ran out; the job may still be running.
        WarehouseError: A poll failed fatally or exhausted its own retries.
        OperationCancelledError: *cancel* was set while waiting.
    """
    polls = 0

    def attempt() -> QueryResponse:
        nonlocal polls
        polls += 1
        response = poll()
        if not response.job_complete:
            raise _JobIncomplete(response)
        return response

    try:
        response = run_with_retries(
            attempt,
            policy=policy,
            clock=clock,
            should_retry=_is_incomplete,
            cancel=cancel,
            operation_name="query.wait",
        )
    except RetryExhaustedError as exc:
        if not isinstance(exc.__cause__, _JobIncomplete):
            raise
        raise JobTimeoutError(
            f"Timed out waiting for job {job_id} after {polls} poll(s) "
            f"in {exc.elapsed_s:.2f}s",
            job_id=job_id,
            polls=polls,
            elapsed_s=exc.elapsed_s,
            hint="The job may still be running; poll it again or cancel it.",
        ) from None
    logger.debug("Job %s completed after %d poll(s)", job_id, polls)
    return response
