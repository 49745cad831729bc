"""Failure inspection and translation for gateway calls.

Gateways raise whatever their transport raises. These helpers read retry
metadata (status code, error reason, retry-after hints) out of those
exceptions so the retry executor can classify them, and map them into the
``WarehouseError`` domain once they are final.
"""

from __future__ import annotations

import enum
import re
from typing import Any

import httpx

from quarry._http import QUOTA_REASONS, RETRYABLE_REASONS, RETRYABLE_STATUS_CODES
from quarry.errors import (
    NotFoundError,
    QuarryError,
    RateLimitError,
    WarehouseError,
    _walk_exception_chain,
)


class FailureCategory(enum.Enum):
    """Whether retrying a failed call can help."""

    TRANSIENT = "transient"
    FATAL = "fatal"


def _http_status(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599:
        return value
    return None


def _error_body(e: BaseException) -> Any:
    details: Any = getattr(e, "details", None)
    if isinstance(details, dict):
        return details
    response = getattr(e, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.json()
        except (ValueError, httpx.ResponseNotRead):
            return None
    return None


def _error_envelope(e: BaseException) -> dict[str, Any]:
    """Return the ``error`` object of a warehouse error body, or ``{}``.

    The warehouse reports failures as::

        {"error": {"code": 403,
                   "errors": [{"reason": "quotaExceeded", "message": "..."}],
                   "details": [{"@type": ".../RetryInfo", "retryDelay": "8s"}]}}
    """
    body = _error_body(e)
    envelope = body.get("error") if isinstance(body, dict) else None
    return envelope if isinstance(envelope, dict) else {}


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code.

    An explicit ``status_code`` (ours, httpx's response, or a vendor
    exception's) wins over the ``code`` echoed in the error body.
    """
    for e in _walk_exception_chain(exc):
        response = getattr(e, "response", None)
        for candidate in (
            getattr(e, "status_code", None),
            getattr(response, "status_code", None),
            _error_envelope(e).get("code"),
        ):
            status = _http_status(candidate)
            if status is not None:
                return status
    return None


def extract_reason(exc: BaseException) -> str | None:
    """Walk the exception chain to find the warehouse error reason.

    Reasons come from a ``reason`` attribute or from the first entry of
    ``error.errors`` in the body that carries one.
    """
    for e in _walk_exception_chain(exc):
        value = getattr(e, "reason", None)
        if isinstance(value, str) and value:
            return value
        for entry in _dicts(_error_envelope(e).get("errors")):
            reason = entry.get("reason")
            if isinstance(reason, str) and reason:
                return reason
    return None


# Protobuf Duration JSON form: seconds with optional fraction and an "s" suffix.
_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)s")


def _retry_delay_s(e: BaseException) -> float | None:
    """Read the ``retryDelay`` of a RetryInfo entry in ``error.details``."""
    for entry in _dicts(_error_envelope(e).get("details")):
        if not str(entry.get("@type", "")).endswith("RetryInfo"):
            continue
        match = _DURATION_RE.fullmatch(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, WarehouseError) and e.retry_after_s is not None:
            return e.retry_after_s
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            raw = headers.get("Retry-After")
            if isinstance(raw, str) and raw.strip():
                try:
                    seconds = float(raw)
                except ValueError:
                    seconds = -1.0
                if seconds >= 0:
                    return seconds

        retry_info = _retry_delay_s(e)
        if retry_info is not None:
            return retry_info
    return None


def _is_transport_failure(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(
            e,
            (httpx.TransportError, httpx.TimeoutException, ConnectionError, TimeoutError),
        ):
            return True
    return False


def categorize_failure(exc: BaseException) -> FailureCategory:
    """Classify a failed gateway call as transient or fatal.

    Contract:
    - Errors already in the Quarry domain keep their explicit verdict; other
      ``QuarryError`` types (validation, cancellation) are fatal.
    - Known transient reasons win over the status code; quota failures are
      transient only when a retry-after hint is attached.
    - Retryable HTTP statuses are transient; any other status is fatal.
    - Connection resets and timeouts are transient.
    """
    if isinstance(exc, WarehouseError) and exc.retryable is not None:
        return FailureCategory.TRANSIENT if exc.retryable else FailureCategory.FATAL
    if isinstance(exc, QuarryError):
        return FailureCategory.FATAL

    reason = extract_reason(exc)
    retry_after_s = extract_retry_after_s(exc)
    if reason in RETRYABLE_REASONS:
        return FailureCategory.TRANSIENT
    if reason in QUOTA_REASONS:
        if retry_after_s is not None:
            return FailureCategory.TRANSIENT
        return FailureCategory.FATAL

    status_code = extract_status_code(exc)
    if status_code is not None:
        if status_code in RETRYABLE_STATUS_CODES:
            return FailureCategory.TRANSIENT
        return FailureCategory.FATAL

    if _is_transport_failure(exc):
        return FailureCategory.TRANSIENT
    if retry_after_s is not None:
        return FailureCategory.TRANSIENT
    return FailureCategory.FATAL


def _auth_hint(status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        return (
            "Check the gateway credentials and that they grant access to the "
            "configured project (Config.project_id / QUARRY_PROJECT_ID)."
        )
    return None


def wrap_gateway_error(
    exc: BaseException,
    *,
    operation: str,
    message: str | None = None,
    hint: str | None = None,
) -> WarehouseError:
    """Map a transport exception into a WarehouseError with retry metadata."""
    if isinstance(exc, WarehouseError):
        if exc.operation is None:
            exc.operation = operation
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    reason = extract_reason(exc)
    retry_after_s = extract_retry_after_s(exc)
    retryable = categorize_failure(exc) is FailureCategory.TRANSIENT

    err_cls: type[WarehouseError] = WarehouseError
    if status_code == 404:
        err_cls = NotFoundError
    elif status_code == 429 or reason in QUOTA_REASONS or reason == "rateLimitExceeded":
        err_cls = RateLimitError

    msg = message or f"{operation} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=hint if hint is not None else _auth_hint(status_code),
        retryable=retryable,
        status_code=status_code,
        reason=reason,
        retry_after_s=retry_after_s,
        operation=operation,
    )
