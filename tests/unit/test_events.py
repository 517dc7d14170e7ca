"""Unit tests for the event types and EventChannel."""

import threading

from eis.events import (
    AnchorChanged,
    ChangeKind,
    EventChannel,
    FileChange,
    Shutdown,
    WatchFailed,
)
from eis.store.base import RepositoryAnchor


class TestFileChange:
    def test_equality_ignores_timestamp(self):
        first = FileChange(path="a.txt", kind=ChangeKind.MODIFIED, timestamp=1.0)
        second = FileChange(path="a.txt", kind=ChangeKind.MODIFIED, timestamp=2.0)

        assert first == second

    def test_change_kind_values(self):
        assert ChangeKind("renamed") is ChangeKind.RENAMED
        assert ChangeKind.CREATED.value == "created"


class TestEventChannel:
    """Unit tests for the bounded producer/consumer channel."""

    def setup_method(self):
        self.channel = EventChannel(maxsize=3)

    def test_fifo_order(self):
        events = [
            FileChange(path="a", kind=ChangeKind.CREATED),
            AnchorChanged(old=None, new=RepositoryAnchor(commit="c" * 40)),
            FileChange(path="b", kind=ChangeKind.DELETED),
        ]
        for event in events:
            assert self.channel.publish(event)

        assert [self.channel.get(timeout=0) for _ in events] == events
        assert self.channel.get(timeout=0) is None

    def test_get_times_out(self):
        assert self.channel.get(timeout=0.01) is None

    def test_overflow_drops_file_changes_and_sets_flag(self):
        for i in range(3):
            change = FileChange(path=str(i), kind=ChangeKind.MODIFIED)
            assert self.channel.publish(change)

        assert not self.channel.publish(FileChange(path="x", kind=ChangeKind.MODIFIED))
        assert self.channel.qsize() == 3
        assert self.channel.take_overflow() is True
        # Flag is cleared once taken
        assert self.channel.take_overflow() is False

    def test_control_events_wait_for_room(self):
        for i in range(3):
            self.channel.publish(FileChange(path=str(i), kind=ChangeKind.MODIFIED))

        published = threading.Event()

        def producer():
            self.channel.publish(Shutdown("test"))
            published.set()

        thread = threading.Thread(target=producer)
        thread.start()
        assert not published.wait(timeout=0.05)

        self.channel.get(timeout=0)
        thread.join(timeout=2.0)
        assert published.is_set()
        assert not self.channel.take_overflow()

    def test_closed_channel_rejects_file_changes_only(self):
        self.channel.publish(FileChange(path="a", kind=ChangeKind.CREATED))
        self.channel.close()

        assert self.channel.closed
        assert not self.channel.publish(FileChange(path="b", kind=ChangeKind.CREATED))
        assert self.channel.publish(WatchFailed("gone"))
        # Already queued events are still delivered
        assert self.channel.get(timeout=0).path == "a"
        assert self.channel.get(timeout=0) == WatchFailed("gone")
