"""
Events flowing from the producers (filesystem watch, HEAD poller, signal
handlers) into the daemon's single control loop.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .store.base import RepositoryAnchor

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileChange:
    """A normalized path-level change, path relative to the work tree root.

    For RENAMED, old_path is where the file was and path where it is now.
    """

    path: str
    kind: ChangeKind
    old_path: Optional[str] = None
    is_directory: bool = False
    timestamp: float = field(default_factory=time.monotonic, compare=False)


@dataclass(frozen=True)
class AnchorChanged:
    """The real HEAD settled on a different commit or branch."""

    old: Optional[RepositoryAnchor]
    new: RepositoryAnchor


@dataclass(frozen=True)
class WatchFailed:
    """The filesystem watch reported an error it cannot recover from."""

    reason: str


@dataclass(frozen=True)
class Shutdown:
    reason: str = "shutdown requested"


Event = Union[FileChange, AnchorChanged, WatchFailed, Shutdown]


class EventChannel:
    """Bounded FIFO between producer threads and the control loop.

    File changes that do not fit are dropped and the overflow flag is raised
    so the consumer can fall back to a full rescan. Control events
    (anchor changes, failures, shutdown) block until there is room.
    """

    def __init__(self, maxsize: int = 10000):
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self._overflowed = threading.Event()
        self._closed = threading.Event()

    def publish(self, event: Event) -> bool:
        """Queue an event. Returns False if it was dropped."""
        if isinstance(event, FileChange):
            if self._closed.is_set():
                return False
            try:
                self._queue.put_nowait(event)
                return True
            except queue.Full:
                if not self._overflowed.is_set():
                    logger.warning("Event channel full, falling back to a full rescan")
                self._overflowed.set()
                return False
        self._queue.put(event)
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Wait for the next event; None when the timeout expires."""
        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        """Stop accepting file changes. Control events are still delivered."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def take_overflow(self) -> bool:
        """Return and clear the overflow flag."""
        if self._overflowed.is_set():
            self._overflowed.clear()
            return True
        return False

    def qsize(self) -> int:
        return self._queue.qsize()
