"""Burst coalescing for file change events."""

import logging
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class DebounceState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


class Debouncer:
    """Turns a stream of events into discrete quiescence signals.

    The first event of a burst moves IDLE -> ACCUMULATING. Every further
    event pushes the idle deadline back. The burst ends (a quiescence signal)
    once no event arrived for idle_seconds, or unconditionally once
    max_window_seconds passed since the burst started, so steady low-rate
    editing still produces snapshots.

    The debouncer never sleeps or spawns threads; the owner asks it how long
    to wait (time_until_deadline) and polls it afterwards.
    """

    def __init__(
        self,
        idle_seconds: float,
        max_window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_window_seconds < idle_seconds:
            logger.warning(
                f"max_window_seconds ({max_window_seconds}) is shorter than "
                f"idle_seconds ({idle_seconds}); "
                "bursts will always hit the hard deadline"
            )
        self.idle_seconds = idle_seconds
        self.max_window_seconds = max_window_seconds
        self.clock = clock

        self.state = DebounceState.IDLE
        self.burst_started_at: Optional[float] = None
        self.last_event_at: Optional[float] = None
        self.burst_events = 0

        # Statistics
        self.quiescence_count = 0
        self.forced_by_max_window = 0

    def record(self, now: Optional[float] = None) -> None:
        """Register one event."""
        now = self.clock() if now is None else now
        if self.state is DebounceState.IDLE:
            self.state = DebounceState.ACCUMULATING
            self.burst_started_at = now
            self.burst_events = 0
        self.last_event_at = now
        self.burst_events += 1

    def deadline(self) -> Optional[float]:
        """Absolute clock time at which the current burst ends, None when idle."""
        if self.state is DebounceState.IDLE:
            return None
        assert self.last_event_at is not None and self.burst_started_at is not None
        return min(
            self.last_event_at + self.idle_seconds,
            self.burst_started_at + self.max_window_seconds,
        )

    def time_until_deadline(self, now: Optional[float] = None) -> Optional[float]:
        deadline = self.deadline()
        if deadline is None:
            return None
        now = self.clock() if now is None else now
        return max(0.0, deadline - now)

    def poll(self, now: Optional[float] = None) -> bool:
        """Return True exactly once per burst, when the burst has ended."""
        deadline = self.deadline()
        if deadline is None:
            return False
        now = self.clock() if now is None else now
        if now < deadline:
            return False

        assert self.burst_started_at is not None
        if now - self.burst_started_at >= self.max_window_seconds:
            self.forced_by_max_window += 1
            logger.debug(f"Burst of {self.burst_events} events hit the max window")
        self._fire()
        return True

    def flush(self) -> bool:
        """End the current burst immediately. Returns False when idle."""
        if self.state is DebounceState.IDLE:
            return False
        self._fire()
        return True

    def _fire(self) -> None:
        self.quiescence_count += 1
        self.state = DebounceState.IDLE
        self.burst_started_at = None
        self.last_event_at = None
        self.burst_events = 0
