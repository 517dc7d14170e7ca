"""
Daemon control loop.

A single thread consumes the event channel and is the only code that touches
the shadow index and chain manager. The filesystem watch and the HEAD poller
are producers running on their own threads; they never mutate shared state.
"""

import logging
import os
import threading
import time
from typing import Any, Callable, Dict, Optional

from ..config import EisConfig
from ..errors import AnchorReadError, StoreError, WatchUnavailableError
from ..events import (
    AnchorChanged,
    ChangeKind,
    Event,
    EventChannel,
    FileChange,
    Shutdown,
    WatchFailed,
)
from ..services.chain_manager import ChainManager, SnapshotOutcome, SnapshotStatus
from ..services.change_notifier import ChangeNotifier
from ..services.daemon_status import DaemonStatus, Health
from ..services.debouncer import Debouncer
from ..services.ignore_filter import IgnoreFilter
from ..services.repo_state_tracker import RepositoryStateTracker
from ..services.shadow_index import ShadowIndex
from ..services.snapshot_builder import SnapshotBuilder
from ..store.base import ObjectStore, RepositoryAnchor

logger = logging.getLogger(__name__)


class DaemonLoop:
    """Wires notifier, debouncer, shadow index and chain manager together."""

    # Upper bound on one wait for events, so shutdown requests and a dead
    # watch are noticed promptly
    MAX_WAIT_SECONDS = 0.5

    def __init__(
        self,
        config: EisConfig,
        store: ObjectStore,
        channel: Optional[EventChannel] = None,
        notifier: Optional[Any] = None,
        tracker: Optional[RepositoryStateTracker] = None,
        clock: Callable[[], float] = time.monotonic,
        poll_head: bool = True,
    ):
        """Initialize the daemon loop.

        Args:
            config: Loaded eis configuration
            store: Object store of the watched repository
            channel: Event channel, created from config when None
            notifier: Filesystem change producer, a ChangeNotifier when None
            tracker: HEAD tracker, one publishing to the channel when None
            clock: Monotonic clock driving the debouncer
            poll_head: Whether the tracker polls HEAD on its own thread
        """
        self.config = config
        self.store = store
        self.channel = channel or EventChannel(config.event_queue_size)

        self.ignore_filter = IgnoreFilter(
            config.repo_dir,
            config.ignore_patterns,
            git_dir=getattr(store, "git_dir", None),
        )
        self.shadow = ShadowIndex(
            config.repo_dir,
            self.ignore_filter,
            include_untracked=config.snapshot.include_untracked,
        )
        self.builder = SnapshotBuilder(store, config.snapshot)
        self.chain = ChainManager(store, self.builder, config.snapshot)
        self.debouncer = Debouncer(
            config.debounce.idle_seconds,
            config.debounce.max_window_seconds,
            clock=clock,
        )
        self.notifier = notifier or ChangeNotifier(
            config.repo_dir, self.ignore_filter, self.channel
        )
        self.tracker = tracker or RepositoryStateTracker.publishing_to(
            store,
            self.channel,
            poll_interval=config.tracker.poll_interval_seconds,
            settle_polls=config.tracker.settle_polls,
        )
        self.poll_head = poll_head
        self.status = DaemonStatus()

        # Latest change per path since the last snapshot
        self._pending: Dict[str, FileChange] = {}
        self._rescan_needed = False
        self._gitignore_changed = False
        self._shutdown_requested = threading.Event()

    # Lifecycle

    def startup(self) -> None:
        """Reconcile with the repository and start the producers.

        Raises:
            WatchUnavailableError: If the filesystem watch cannot be started
            StoreError: If the repository cannot be read
            AnchorReadError: If HEAD cannot be read
        """
        logger.info(f"Starting eis daemon for {self.config.repo_dir}")
        self.status.mark_started(os.getpid())
        self._save_status()

        # Watch before reading state so nothing changing in between is missed
        self.notifier.start()

        anchor = self.store.read_anchor()
        self.shadow.load(self.store)
        self.chain.initialize(anchor)
        self.tracker.start(anchor)
        if self.poll_head:
            self.tracker.start_polling()
        self._record_anchor(anchor)

        # Capture uncommitted work that predates this daemon
        outcome = self._snapshot("startup")
        if outcome.status is not SnapshotStatus.DROPPED:
            self.status.set_health(Health.HEALTHY)
        self._save_status()
        logger.info(
            f"eis daemon running: {len(self.shadow)} files on {anchor.describe()}"
        )

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current step. Safe from any thread."""
        self._shutdown_requested.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    def shutdown(self, final_health: Health = Health.STOPPED) -> None:
        """Stop the producers, drain what they queued and flush a last snapshot.

        Raises:
            StoreError: If the final snapshot cannot be written
        """
        logger.info("Shutting down eis daemon")
        self._stop_producers()

        drained = 0
        while True:
            event = self.channel.get(timeout=0)
            if event is None:
                break
            if isinstance(event, (FileChange, AnchorChanged)):
                self._dispatch(event)
                drained += 1
        if drained:
            logger.debug(f"Drained {drained} queued events")

        if self.channel.take_overflow():
            self._rescan_needed = True
        if self.debouncer.flush() or self._pending or self._rescan_needed:
            self._snapshot("shutdown")

        self.status.set_health(final_health)
        self._save_status()
        logger.info(f"eis daemon stopped: {self.get_stats()}")

    def run(self) -> int:
        """Run until shutdown is requested or a fatal error occurs.

        Returns:
            Process exit code: 0 after a clean shutdown, 1 after a fatal error
        """
        try:
            self.startup()
            while self.step():
                pass
        except WatchUnavailableError as e:
            return self._fail(Health.WATCH_FAILED, e, flush=True)
        except (StoreError, AnchorReadError) as e:
            return self._fail(Health.STORE_FAILED, e, flush=False)

        try:
            self.shutdown()
        except StoreError as e:
            return self._fail(Health.STORE_FAILED, e, flush=False)
        return 0

    def _fail(self, health: Health, error: Exception, flush: bool) -> int:
        logger.error(f"eis daemon stopping after fatal error: {error}")
        self.status.set_health(health, str(error))
        if flush:
            try:
                self.shutdown(final_health=health)
                return 1
            except StoreError as e:
                logger.error(f"Final snapshot failed: {e}")
                self.status.set_health(health, f"{error}; final snapshot failed: {e}")
        self._stop_producers()
        self._save_status()
        return 1

    def _stop_producers(self) -> None:
        self.channel.close()
        self.notifier.stop()
        self.tracker.stop_polling()

    # Control loop

    def step(self) -> bool:
        """Run one iteration: wait for an event, then check for quiescence.

        Returns:
            False once the loop should stop

        Raises:
            WatchUnavailableError: If the filesystem watch died
            StoreError: If a snapshot cannot be written
        """
        if self._shutdown_requested.is_set():
            return False
        if not self.notifier.is_alive():
            raise WatchUnavailableError("file system watch stopped unexpectedly")

        if self.channel.take_overflow():
            self._rescan_needed = True
            self.debouncer.record()

        wait = self.debouncer.time_until_deadline()
        timeout = (
            self.MAX_WAIT_SECONDS if wait is None else min(wait, self.MAX_WAIT_SECONDS)
        )
        event = self.channel.get(timeout=timeout)
        if event is not None:
            self._dispatch(event)

        if self.debouncer.poll():
            self._snapshot("quiescence")
        return not self._shutdown_requested.is_set()

    def _dispatch(self, event: Event) -> None:
        if isinstance(event, FileChange):
            self._on_file_change(event)
        elif isinstance(event, AnchorChanged):
            self._on_anchor_changed(event)
        elif isinstance(event, WatchFailed):
            raise WatchUnavailableError(event.reason)
        elif isinstance(event, Shutdown):
            logger.info(f"Shutdown event: {event.reason}")
            self.request_shutdown()

    def _on_file_change(self, change: FileChange) -> None:
        self.status.events_received += 1
        if change.kind is ChangeKind.RENAMED and change.old_path is not None:
            self._queue_change(
                FileChange(
                    path=change.old_path,
                    kind=ChangeKind.DELETED,
                    is_directory=change.is_directory,
                )
            )
            self._queue_change(
                FileChange(
                    path=change.path,
                    kind=ChangeKind.CREATED,
                    is_directory=change.is_directory,
                )
            )
        else:
            self._queue_change(change)
        self.debouncer.record()

    def _queue_change(self, change: FileChange) -> None:
        if self.ignore_filter.is_gitignore_file(change.path):
            self._gitignore_changed = True
        self._pending[change.path] = change

    def _on_anchor_changed(self, event: AnchorChanged) -> None:
        self.chain.on_anchor_changed(event.new)
        # A commit or checkout changes which paths .gitignore may hide
        tracked_before = self.shadow.git_tracked
        self.shadow.refresh_tracked_set(self.store)
        if self.shadow.git_tracked != tracked_before:
            # Entries that just left the index may now be ignored
            self._rescan_needed = True
        self.status.anchor_changes += 1
        self._record_anchor(event.new)
        self._save_status()

    # Snapshots

    def _apply_pending(self) -> None:
        if self._gitignore_changed:
            self.ignore_filter.reload_gitignore()
            self._gitignore_changed = False
            self._rescan_needed = True

        if self._rescan_needed:
            self._pending.clear()
            self._rescan_needed = False
            self.shadow.rescan()
            return

        pending = list(self._pending.values())
        self._pending.clear()
        for change in pending:
            self.shadow.observe(
                change.path, change.kind, change.old_path, change.is_directory
            )

    def _snapshot(self, reason: str) -> SnapshotOutcome:
        """Bring the shadow index up to date and hand it to the chain manager."""
        self._apply_pending()
        outcome = self.chain.on_quiescence(self.shadow)
        logger.debug(f"Snapshot on {reason}: {outcome.status.value} {outcome.reason}")

        if outcome.status is SnapshotStatus.WRITTEN and outcome.commit:
            self.status.record_snapshot(outcome.commit)
            self.status.set_health(Health.HEALTHY)
        elif outcome.status is SnapshotStatus.DROPPED:
            self.status.set_health(
                Health.REF_UPDATE_FAILING,
                f"could not update {self.chain.ref_name}: {outcome.reason}",
            )
            # Try again after the next idle window
            self.debouncer.record()
        elif self.status.health == Health.REF_UPDATE_FAILING.value:
            self.status.set_health(Health.HEALTHY)

        self.status.chain_state = self.chain.state.value
        self.status.chain_tip = self.chain.tip
        self.status.snapshots_written = self.chain.snapshots_written
        self.status.snapshots_skipped = self.chain.snapshots_skipped
        self.status.snapshots_dropped = self.chain.snapshots_dropped
        self.status.consecutive_ref_failures = self.chain.consecutive_drops
        self._save_status()
        return outcome

    # Status

    def _record_anchor(self, anchor: RepositoryAnchor) -> None:
        self.status.anchor_commit = anchor.commit
        self.status.anchor_branch = anchor.branch
        self.status.chain_state = self.chain.state.value
        self.status.chain_tip = self.chain.tip

    def _save_status(self) -> None:
        try:
            self.status.save_to_disk(self.config.status_path)
        except OSError as e:
            logger.warning(f"Could not write {self.config.status_path}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.chain.get_stats(),
            "tracked_files": len(self.shadow),
            "pending_changes": len(self._pending),
            "quiescence_count": self.debouncer.quiescence_count,
            "events_received": self.status.events_received,
            "watcher": self.notifier.get_stats(),
        }
