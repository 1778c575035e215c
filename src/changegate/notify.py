"""Rate-limited reminders.

Reminders are advisory and never affect the gate decision. The throttle is
an explicit object (clock + state) owned by the process; it is reset only
by calling :meth:`ReminderThrottle.reset`.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class Reminder:
    topic: str
    message: str


class ReminderThrottle:
    """Sliding window: at most one reminder per ``interval_seconds``."""

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_seconds = max(0.0, interval_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_sent: float | None = None
        self.suppressed = 0

    def allow(self) -> bool:
        """Consume the window if open. Returns True when a reminder may be sent."""
        with self._lock:
            now = self._clock()
            if self._last_sent is not None and now - self._last_sent < self.interval_seconds:
                self.suppressed += 1
                return False
            self._last_sent = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_sent = None
            self.suppressed = 0


class Notifier:
    """Collect reminders through a throttle and hand them to a sink."""

    def __init__(self, throttle: ReminderThrottle, sink: Callable[[Reminder], None] | None = None) -> None:
        self.throttle = throttle
        self._sink = sink
        self.sent: list[Reminder] = []

    def remind(self, topic: str, message: str) -> bool:
        if not self.throttle.allow():
            return False
        reminder = Reminder(topic=topic, message=message)
        self.sent.append(reminder)
        if self._sink is not None:
            self._sink(reminder)
        return True


_PROCESS_THROTTLE: ReminderThrottle | None = None
_PROCESS_LOCK = threading.Lock()


def process_throttle(interval_seconds: float) -> ReminderThrottle:
    """Process-wide throttle, created on first use."""
    global _PROCESS_THROTTLE
    with _PROCESS_LOCK:
        if _PROCESS_THROTTLE is None:
            _PROCESS_THROTTLE = ReminderThrottle(interval_seconds)
        return _PROCESS_THROTTLE


def reset_process_throttle() -> None:
    """Explicit user reset of the process-wide reminder window."""
    with _PROCESS_LOCK:
        if _PROCESS_THROTTLE is not None:
            _PROCESS_THROTTLE.reset()
