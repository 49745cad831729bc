from __future__ import annotations

import pytest

from quarry.errors import (
    InvalidArgumentError,
    JobTimeoutError,
    NotFoundError,
    QuarryError,
    RateLimitError,
    RetryExhaustedError,
    WarehouseError,
)
from quarry.ids import JobId

pytestmark = pytest.mark.unit


def test_warehouse_error_structured_metadata() -> None:
    err = WarehouseError(
        "boom",
        hint="do this",
        retryable=True,
        status_code=503,
        reason="backendError",
        retry_after_s=2.0,
        operation="dataset.get",
    )

    assert str(err) == "boom"
    assert err.hint == "do this"
    assert err.retryable is True
    assert err.status_code == 503
    assert err.reason == "backendError"
    assert err.retry_after_s == 2.0
    assert err.operation == "dataset.get"


def test_warehouse_error_defaults_to_none() -> None:
    err = WarehouseError("fail")
    assert err.hint is None
    assert err.retryable is None
    assert err.status_code is None
    assert err.reason is None
    assert err.retry_after_s is None
    assert err.operation is None
    assert err.cause is None


def test_cause_exposes_the_underlying_failure() -> None:
    original = ConnectionResetError("reset")
    try:
        try:
            raise original
        except ConnectionResetError as exc:
            raise WarehouseError("wrapped") from exc
    except WarehouseError as err:
        assert err.cause is original


def test_subclass_hierarchy() -> None:
    """Specific failures stay catchable as WarehouseError and QuarryError."""
    for err in (
        NotFoundError("missing", status_code=404),
        RateLimitError("slow down", status_code=429),
        RetryExhaustedError("gave up", attempts=3, elapsed_s=1.5),
        JobTimeoutError("timed out", job_id=JobId("j"), polls=4, elapsed_s=9.0),
    ):
        assert isinstance(err, WarehouseError)
        assert isinstance(err, QuarryError)

    assert not issubclass(InvalidArgumentError, WarehouseError)


def test_retry_exhausted_is_marked_retryable() -> None:
    err = RetryExhaustedError("gave up", attempts=3, elapsed_s=1.5, status_code=503)
    assert err.retryable is True
    assert err.attempts == 3
    assert err.elapsed_s == 1.5
    assert err.status_code == 503


def test_job_timeout_is_not_a_retry_exhaustion() -> None:
    """A wait timeout is its own failure: the job may still be running."""
    err = JobTimeoutError("timed out", job_id=JobId("j", "p"), polls=4, elapsed_s=9.0)

    assert not isinstance(err, RetryExhaustedError)
    assert err.retryable is False
    assert err.operation == "query.wait"
    assert err.job_id == JobId("j", "p")
    assert err.polls == 4
