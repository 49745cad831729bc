"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off clocks and gateways as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import TYPE_CHECKING, Any

from quarry.gateway.memory import http_error
from quarry.options import OptionKind
from quarry.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass
class FakeClock:
    """Clock that never blocks: sleeping advances ``now`` and is recorded."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return False
        self.sleeps.append(seconds)
        self.now += seconds
        return True


@dataclass
class CancellingClock(FakeClock):
    """FakeClock that sets ``event`` as soon as anything starts to back off."""

    event: threading.Event = field(default_factory=threading.Event)

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        self.event.set()
        return super().sleep(seconds, cancel)


@dataclass
class ScriptedOperation:
    """Zero-argument callable that raises queued failures, then returns ``result``."""

    failures: list[BaseException] = field(default_factory=list)
    result: Any = "ok"
    calls: int = 0

    def __call__(self) -> Any:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@dataclass
class PagedGateway:
    """Gateway double serving scripted list pages keyed by page token.

    ``pages`` maps the incoming token (``None`` for the first request) to the
    ``(cursor, batch)`` pair to return. Only ``list`` is implemented.
    """

    pages: dict[str | None, tuple[str | None, list[dict[str, Any]]]]
    requests: list[dict[OptionKind, Any]] = field(default_factory=list)

    def list(
        self, kind: str, parent: dict[str, Any], options: Mapping[OptionKind, Any]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        del kind, parent
        self.requests.append(dict(options))
        return self.pages[options.get(OptionKind.PAGE_TOKEN)]


def transient_error(**kwargs: Any) -> Exception:
    """A 503 backendError, retried by the default classifier."""
    return http_error(503, "backendError", "Backend error", **kwargs)


def fatal_error(**kwargs: Any) -> Exception:
    """A 400 invalid, never retried."""
    return http_error(400, "invalid", "Invalid value", **kwargs)


# No jitter so delays are exact: 1, 2, 4, 8, 8, ...
DETERMINISTIC_POLICY = RetryPolicy(
    max_attempts=5,
    initial_delay_s=1.0,
    backoff_multiplier=2.0,
    max_delay_s=8.0,
    jitter=False,
    max_elapsed_s=None,
)

FAST_WAIT_POLICY = RetryPolicy(
    max_attempts=None,
    initial_delay_s=1.0,
    backoff_multiplier=2.0,
    max_delay_s=4.0,
    jitter=False,
    max_elapsed_s=30.0,
)
