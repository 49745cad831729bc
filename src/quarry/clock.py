"""Clock abstraction used for retry timing."""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Monotonic time source plus an interruptible sleep."""

    def monotonic(self) -> float:
        """Return monotonic seconds."""
        ...

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        """Sleep for *seconds*; return False if *cancel* fired first."""
        ...


class SystemClock:
    """Wall-clock implementation backed by ``time.monotonic``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: threading.Event | None = None) -> bool:
        if seconds <= 0:
            return cancel is None or not cancel.is_set()
        if cancel is None:
            time.sleep(seconds)
            return True
        # Event.wait returns True when the event is set, i.e. on cancellation.
        return not cancel.wait(seconds)

    def __repr__(self) -> str:
        return "SystemClock()"


SYSTEM_CLOCK = SystemClock()
