"""Invocation-wide deadline with cooperative cancellation."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from changegate.errors import AnalysisTimeout


class Deadline:
    """Deadline shared by every task of one invocation.

    Analyses should call :meth:`check` (or consult :meth:`remaining`)
    between units of work; the dispatcher calls :meth:`cancel` when it
    stops waiting.
    """

    def __init__(
        self,
        seconds: float | None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + max(0.0, seconds)
        self._cancelled = threading.Event()

    def remaining(self) -> float | None:
        """Seconds left, ``0.0`` once expired, ``None`` when unbounded."""
        if self._cancelled.is_set():
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def check(self) -> None:
        if self.expired:
            raise AnalysisTimeout("timeout")
