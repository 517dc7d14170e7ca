"""
Repository state tracker: polls the real HEAD and reports settled moves.

A move is only reported once HEAD reads the same on settle_polls consecutive
polls and no rebase/merge/cherry-pick is in progress, so the chain is not
re-anchored on every intermediate commit of a rebase.
"""

import logging
import threading
from typing import Callable, Optional, Tuple

from ..errors import AnchorReadError
from ..events import AnchorChanged, EventChannel
from ..store.base import ObjectStore, RepositoryAnchor

logger = logging.getLogger(__name__)


def _key(anchor: RepositoryAnchor) -> Tuple[Optional[str], Optional[str]]:
    return anchor.commit, anchor.branch


class RepositoryStateTracker:
    """Detects settled anchor changes in the real repository."""

    def __init__(
        self,
        store: ObjectStore,
        poll_interval: float = 1.0,
        settle_polls: int = 2,
        on_change: Optional[Callable[[AnchorChanged], object]] = None,
    ):
        """Initialize the tracker.

        Args:
            store: Store used to read HEAD
            poll_interval: Seconds between polls when running in a thread
            settle_polls: Identical consecutive reads required before reporting
            on_change: Called with every AnchorChanged event
        """
        self.store = store
        self.poll_interval = poll_interval
        self.settle_polls = settle_polls
        self.on_change = on_change

        self.current: Optional[RepositoryAnchor] = None
        self._candidate: Optional[RepositoryAnchor] = None
        self._candidate_polls = 0

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

        # Statistics
        self.read_failures = 0
        self.changes_detected = 0

    @classmethod
    def publishing_to(
        cls,
        store: ObjectStore,
        channel: EventChannel,
        poll_interval: float = 1.0,
        settle_polls: int = 2,
    ) -> "RepositoryStateTracker":
        """Create a tracker that publishes its events on a channel."""
        return cls(store, poll_interval, settle_polls, on_change=channel.publish)

    def start(self, initial: RepositoryAnchor) -> None:
        """Set the baseline anchor without reporting it."""
        self.current = initial
        self._candidate = None
        self._candidate_polls = 0

    def check(self) -> Optional[AnchorChanged]:
        """Poll HEAD once. Returns an event when a settled change is seen."""
        try:
            anchor = self.store.read_anchor()
        except AnchorReadError as e:
            self.read_failures += 1
            logger.warning(f"Could not read HEAD, will retry: {e}")
            return None

        if not anchor.is_settled:
            if self._candidate is not None:
                logger.debug(f"Waiting for {anchor.operation} to finish")
            self._candidate = None
            self._candidate_polls = 0
            return None

        if self.current is not None and _key(anchor) == _key(self.current):
            self._candidate = None
            self._candidate_polls = 0
            return None

        if self._candidate is not None and _key(anchor) == _key(self._candidate):
            self._candidate_polls += 1
        else:
            self._candidate = anchor
            self._candidate_polls = 1

        if self._candidate_polls < self.settle_polls:
            return None

        event = AnchorChanged(old=self.current, new=anchor)
        was = event.old.describe() if event.old is not None else "unknown"
        self.current = anchor
        self._candidate = None
        self._candidate_polls = 0
        self.changes_detected += 1
        logger.info(f"HEAD settled on {anchor.describe()} (was {was})")
        if self.on_change is not None:
            self.on_change(event)
        return event

    # Background polling

    def start_polling(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop, name="EisHeadPoller", daemon=True
        )
        self._thread.start()
        logger.info(f"Polling HEAD every {self.poll_interval}s")

    def stop_polling(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None

    def _poll_loop(self) -> None:
        while not self._stop.wait(timeout=self.poll_interval):
            try:
                self.check()
            except Exception as e:
                # Keep polling; a broken store surfaces through the control loop
                logger.error(f"HEAD poll failed: {e}")
