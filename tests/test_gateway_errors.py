"""Failure classification and translation of transport exceptions."""

from __future__ import annotations

import httpx
import pytest

from quarry.errors import (
    InvalidArgumentError,
    NotFoundError,
    OperationCancelledError,
    RateLimitError,
    WarehouseError,
)
from quarry.gateway._errors import (
    FailureCategory,
    categorize_failure,
    extract_reason,
    extract_retry_after_s,
    extract_status_code,
    wrap_gateway_error,
)
from quarry.gateway.memory import http_error

pytestmark = pytest.mark.unit


def _with_retry_info(status: int, reason: str, delay: str) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://warehouse.invalid/v2/datasets")
    response = httpx.Response(
        status,
        request=request,
        json={
            "error": {
                "code": status,
                "errors": [{"reason": reason}],
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": delay}
                ],
            }
        },
    )
    return httpx.HTTPStatusError("quota", request=request, response=response)


@pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
def test_retryable_statuses_are_transient(status: int) -> None:
    exc = http_error(status, "somethingElse", "boom")
    assert categorize_failure(exc) is FailureCategory.TRANSIENT


@pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 412])
def test_other_statuses_are_fatal(status: int) -> None:
    exc = http_error(status, "invalid", "nope")
    assert categorize_failure(exc) is FailureCategory.FATAL


@pytest.mark.parametrize("reason", ["backendError", "internalError", "rateLimitExceeded"])
def test_transient_reasons_win_over_status(reason: str) -> None:
    exc = http_error(403, reason, "try later")
    assert categorize_failure(exc) is FailureCategory.TRANSIENT


def test_quota_is_fatal_without_a_retry_hint() -> None:
    exc = http_error(403, "quotaExceeded", "Quota exceeded")
    assert categorize_failure(exc) is FailureCategory.FATAL


def test_quota_with_retry_after_is_transient() -> None:
    exc = http_error(403, "quotaExceeded", "Quota exceeded", retry_after_s=7)
    assert categorize_failure(exc) is FailureCategory.TRANSIENT
    assert extract_retry_after_s(exc) == 7.0


def test_retry_info_body_is_a_retry_hint() -> None:
    exc = _with_retry_info(403, "quotaExceeded", "8s")
    assert extract_retry_after_s(exc) == 8.0
    assert categorize_failure(exc) is FailureCategory.TRANSIENT


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        ConnectionResetError("reset"),
        TimeoutError("timed out"),
    ],
)
def test_transport_failures_are_transient(exc: Exception) -> None:
    assert categorize_failure(exc) is FailureCategory.TRANSIENT


def test_unknown_exceptions_are_fatal() -> None:
    assert categorize_failure(ValueError("bad")) is FailureCategory.FATAL


def test_transport_failure_found_through_exception_chain() -> None:
    try:
        try:
            raise httpx.ConnectError("refused")
        except httpx.ConnectError as inner:
            raise RuntimeError("gateway call failed") from inner
    except RuntimeError as outer:
        assert categorize_failure(outer) is FailureCategory.TRANSIENT


def test_quarry_errors_keep_their_verdict() -> None:
    assert categorize_failure(WarehouseError("x", retryable=True)) is FailureCategory.TRANSIENT
    assert categorize_failure(WarehouseError("x", retryable=False)) is FailureCategory.FATAL
    assert categorize_failure(InvalidArgumentError("x")) is FailureCategory.FATAL
    assert categorize_failure(OperationCancelledError("x")) is FailureCategory.FATAL


def test_extractors_read_http_status_error() -> None:
    exc = http_error(503, "backendError", "down", retry_after_s=3)
    assert extract_status_code(exc) == 503
    assert extract_reason(exc) == "backendError"
    assert extract_retry_after_s(exc) == 3.0


def test_extractors_read_plain_attributes() -> None:
    class VendorError(Exception):
        status_code = 429
        reason = "rateLimitExceeded"
        retry_after = 1.5

    exc = VendorError("slow down")
    assert extract_status_code(exc) == 429
    assert extract_reason(exc) == "rateLimitExceeded"
    assert extract_retry_after_s(exc) == 1.5


def test_unparseable_retry_after_header_is_ignored() -> None:
    request = httpx.Request("GET", "https://warehouse.invalid/v2/datasets")
    response = httpx.Response(503, request=request, headers={"Retry-After": "soon"})
    exc = httpx.HTTPStatusError("down", request=request, response=response)
    assert extract_retry_after_s(exc) is None


def test_wrap_maps_not_found() -> None:
    exc = http_error(404, "notFound", "Not found: Dataset x")
    err = wrap_gateway_error(exc, operation="dataset.get")

    assert isinstance(err, NotFoundError)
    assert err.status_code == 404
    assert err.reason == "notFound"
    assert err.retryable is False
    assert err.operation == "dataset.get"
    assert str(err).startswith("dataset.get failed (status=404): ")


@pytest.mark.parametrize(
    ("status", "reason"),
    [(429, "rateLimitExceeded"), (403, "quotaExceeded"), (403, "rateLimitExceeded")],
)
def test_wrap_maps_rate_limits(status: int, reason: str) -> None:
    err = wrap_gateway_error(http_error(status, reason, "slow"), operation="job.list")
    assert isinstance(err, RateLimitError)
    assert err.reason == reason


@pytest.mark.parametrize("status", [401, 403])
def test_wrap_adds_credentials_hint_for_auth_failures(status: int) -> None:
    err = wrap_gateway_error(http_error(status, "accessDenied", "denied"), operation="x")
    assert err.hint is not None
    assert "QUARRY_PROJECT_ID" in err.hint


def test_wrap_keeps_existing_warehouse_error() -> None:
    original = WarehouseError("already translated", retryable=False)
    err = wrap_gateway_error(original, operation="table.get", hint="look here")

    assert err is original
    assert err.operation == "table.get"
    assert err.hint == "look here"


def test_wrap_does_not_overwrite_existing_operation() -> None:
    original = WarehouseError("x", operation="dataset.create")
    assert wrap_gateway_error(original, operation="other").operation == "dataset.create"


def test_wrap_without_status_code() -> None:
    err = wrap_gateway_error(httpx.ConnectError("refused"), operation="dataset.list")
    assert type(err) is WarehouseError
    assert err.status_code is None
    assert err.retryable is True
    assert str(err) == "dataset.list failed: refused"


def test_decoded_error_body_supplies_status_reason_and_delay() -> None:
    """Client libraries that hand back the decoded body still classify."""

    class DecodedBodyError(Exception):
        def __init__(self, details: dict) -> None:
            super().__init__("request failed")
            self.details = details

    exc = DecodedBodyError(
        {
            "error": {
                "code": 429,
                "errors": [{"message": "no reason here"}, {"reason": "rateLimitExceeded"}],
                "details": [
                    {"@type": "type.googleapis.com/google.rpc.ErrorInfo", "retryDelay": "9s"},
                    {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "0.25s"},
                ],
            }
        }
    )

    assert extract_status_code(exc) == 429
    assert extract_reason(exc) == "rateLimitExceeded"
    assert extract_retry_after_s(exc) == 0.25
    assert isinstance(wrap_gateway_error(exc, operation="jobs.get"), RateLimitError)


@pytest.mark.parametrize("delay", ["8", "soon", "-1s", "8ms"])
def test_malformed_retry_delay_is_ignored(delay: str) -> None:
    exc = _with_retry_info(403, "quotaExceeded", delay)
    assert extract_retry_after_s(exc) is None
    assert categorize_failure(exc) is FailureCategory.FATAL


def test_response_status_wins_over_body_code() -> None:
    request = httpx.Request("GET", "https://warehouse.invalid/v2/datasets")
    response = httpx.Response(502, request=request, json={"error": {"code": 400}})
    exc = httpx.HTTPStatusError("bad gateway", request=request, response=response)
    assert extract_status_code(exc) == 502
