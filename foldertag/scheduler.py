"""Cancellable timers serialised on one dispatch lock.

Watch-mode event callbacks and every timer callback run while holding the
same lock, so handlers see one event at a time and never interleave in the
middle of a step.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable


class TimerHandle:
    """Handle for a scheduled callback."""

    def __init__(self) -> None:
        self.cancelled = False
        self.fired = False
        self._timer: threading.Timer | None = None

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        """Stop the callback from running. Safe to call more than once."""
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class Scheduler:
    """Runs callbacks later, one at a time."""

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self.lock = lock or threading.RLock()
        self._handles: set[TimerHandle] = set()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule ``callback(*args)`` after ``delay`` seconds."""
        handle = TimerHandle()

        def fire() -> None:
            with self.lock:
                self._handles.discard(handle)
                if handle.cancelled:
                    return
                handle.fired = True
                callback(*args)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        handle._timer = timer
        with self.lock:
            self._handles.add(handle)
        timer.start()
        return handle

    def dispatch(self, callback: Callable[..., Any], *args: Any) -> Any:
        """Run ``callback(*args)`` now, under the dispatch lock."""
        with self.lock:
            return callback(*args)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def cancel_all(self) -> None:
        """Cancel every timer that has not fired yet."""
        with self.lock:
            for handle in list(self._handles):
                handle.cancel()
            self._handles.clear()
