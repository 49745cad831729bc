"""HTTP-level retry signals shared by the classifier and the gateways."""

from __future__ import annotations

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

# Error reasons the warehouse attaches to failures that clear up on retry.
RETRYABLE_REASONS: frozenset[str] = frozenset(
    {"backendError", "internalError", "rateLimitExceeded"}
)

# Quota failures are retried only when the service says when to come back.
QUOTA_REASONS: frozenset[str] = frozenset({"quotaExceeded"})
