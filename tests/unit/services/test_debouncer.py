"""
Unit tests for the Debouncer.

Time is driven explicitly through the now argument, so no test sleeps.
"""

from eis.services.debouncer import DebounceState, Debouncer


class TestDebouncer:
    """Unit tests for burst coalescing."""

    def setup_method(self):
        self.debouncer = Debouncer(idle_seconds=2.0, max_window_seconds=10.0)

    def test_starts_idle(self):
        assert self.debouncer.state is DebounceState.IDLE
        assert self.debouncer.deadline() is None
        assert self.debouncer.time_until_deadline(now=0.0) is None
        assert self.debouncer.poll(now=100.0) is False

    def test_first_event_starts_burst(self):
        self.debouncer.record(now=1.0)

        assert self.debouncer.state is DebounceState.ACCUMULATING
        assert self.debouncer.deadline() == 3.0

    def test_burst_within_idle_window_fires_once(self):
        """N events closer together than the idle window give one signal."""
        for t in [0.0, 0.5, 1.0, 1.5, 2.0]:
            self.debouncer.record(now=t)
            assert self.debouncer.poll(now=t) is False

        assert self.debouncer.poll(now=3.9) is False
        assert self.debouncer.poll(now=4.0) is True
        assert self.debouncer.poll(now=10.0) is False
        assert self.debouncer.quiescence_count == 1

    def test_spaced_events_fire_each_time(self):
        """Events further apart than the idle window give one signal each."""
        fired = 0
        for t in [0.0, 5.0, 10.0, 15.0]:
            self.debouncer.record(now=t)
            if self.debouncer.poll(now=t + 2.5):
                fired += 1

        assert fired == 4
        assert self.debouncer.quiescence_count == 4

    def test_new_event_resets_idle_timer(self):
        self.debouncer.record(now=0.0)
        self.debouncer.record(now=1.9)

        assert self.debouncer.poll(now=2.0) is False
        assert self.debouncer.deadline() == 3.9
        assert self.debouncer.poll(now=3.9) is True

    def test_max_window_forces_signal_under_steady_editing(self):
        """Continuous editing cannot postpone a snapshot past the max window."""
        t = 0.0
        fired_at = None
        while t <= 20.0:
            self.debouncer.record(now=t)
            if self.debouncer.poll(now=t):
                fired_at = t
                break
            t += 1.0

        assert fired_at == 10.0
        assert self.debouncer.forced_by_max_window == 1
        assert self.debouncer.state is DebounceState.IDLE

    def test_next_burst_starts_after_forced_signal(self):
        for t in range(0, 11):
            self.debouncer.record(now=float(t))
        assert self.debouncer.poll(now=10.0) is True

        self.debouncer.record(now=11.0)
        assert self.debouncer.burst_started_at == 11.0
        assert self.debouncer.deadline() == 13.0

    def test_time_until_deadline(self):
        self.debouncer.record(now=0.0)

        assert self.debouncer.time_until_deadline(now=0.5) == 1.5
        assert self.debouncer.time_until_deadline(now=5.0) == 0.0

    def test_flush_ends_burst(self):
        assert self.debouncer.flush() is False

        self.debouncer.record(now=0.0)
        assert self.debouncer.flush() is True
        assert self.debouncer.state is DebounceState.IDLE
        assert self.debouncer.poll(now=5.0) is False

    def test_uses_injected_clock(self):
        now = [100.0]
        debouncer = Debouncer(1.0, 5.0, clock=lambda: now[0])

        debouncer.record()
        now[0] = 100.5
        assert debouncer.poll() is False
        now[0] = 101.0
        assert debouncer.poll() is True
