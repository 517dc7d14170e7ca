"""
Filesystem change notifier.

Wraps a watchdog Observer and turns its events into normalized FileChange
events on the daemon's event channel. Only metadata directories and the
configured ignore patterns are filtered here; .gitignore rules depend on
which paths are tracked, which only the control loop knows.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import WatchUnavailableError
from ..events import ChangeKind, EventChannel, FileChange
from .ignore_filter import IgnoreFilter

logger = logging.getLogger(__name__)


class ChangeNotifier(FileSystemEventHandler):
    """Watchdog event handler publishing FileChange events."""

    def __init__(
        self,
        repo_dir: Path,
        ignore_filter: IgnoreFilter,
        channel: EventChannel,
        observer_factory: Any = Observer,
    ):
        """Initialize the notifier.

        Args:
            repo_dir: Work tree root to watch recursively
            ignore_filter: Filter for metadata and configured patterns
            channel: Channel receiving FileChange events
            observer_factory: Callable creating the watchdog observer
        """
        super().__init__()
        self.repo_dir = Path(repo_dir).resolve()
        self.ignore_filter = ignore_filter
        self.channel = channel
        self.observer_factory = observer_factory
        self.observer: Optional[Any] = None

        # Statistics
        self.events_published = 0
        self.events_filtered = 0

    def start(self) -> None:
        """Start watching.

        Raises:
            WatchUnavailableError: If the OS watch cannot be established
                (e.g. inotify watch limit exhausted)
        """
        try:
            self.observer = self.observer_factory()
            self.observer.schedule(self, str(self.repo_dir), recursive=True)
            self.observer.start()
        except OSError as e:
            self.observer = None
            raise WatchUnavailableError(f"Cannot watch {self.repo_dir}: {e}")
        logger.info(f"File system observer started for {self.repo_dir}")

    def stop(self) -> None:
        """Stop watching and wait for the observer thread."""
        if self.observer is not None and self.observer.is_alive():
            self.observer.stop()
            self.observer.join(timeout=5.0)
            logger.info("File system observer stopped")

    def is_alive(self) -> bool:
        """Whether the observer and all of its emitter threads are running.

        An emitter thread dies when the OS watch fails underneath it while the
        observer thread itself keeps running.
        """
        if self.observer is None or not self.observer.is_alive():
            return False
        emitters = getattr(self.observer, "emitters", ())
        return all(emitter.is_alive() for emitter in emitters)

    def on_created(self, event: FileSystemEvent) -> None:
        self._publish(event.src_path, ChangeKind.CREATED, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory mtime updates carry no content change
        if event.is_directory:
            return
        self._publish(event.src_path, ChangeKind.MODIFIED, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._publish(event.src_path, ChangeKind.DELETED, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        old_rel = self._relative(event.src_path)
        new_rel = self._relative(event.dest_path)

        # Moving in or out of the watched set degrades to create or delete
        if new_rel is None or self.ignore_filter.is_ignored(new_rel, tracked=True):
            self._publish(event.src_path, ChangeKind.DELETED, event.is_directory)
            return
        if old_rel is None or self.ignore_filter.is_ignored(old_rel, tracked=True):
            self._publish(event.dest_path, ChangeKind.CREATED, event.is_directory)
            return

        self._emit(
            FileChange(
                path=new_rel,
                kind=ChangeKind.RENAMED,
                old_path=old_rel,
                is_directory=event.is_directory,
            )
        )

    def _relative(self, raw_path: Any) -> Optional[str]:
        if isinstance(raw_path, bytes):
            raw_path = raw_path.decode(errors="surrogateescape")
        return self.ignore_filter.relative_path(Path(raw_path))

    def _publish(self, raw_path: Any, kind: ChangeKind, is_directory: bool) -> None:
        rel_path = self._relative(raw_path)
        if rel_path is None or self.ignore_filter.is_ignored(rel_path, tracked=True):
            self.events_filtered += 1
            return
        self._emit(FileChange(path=rel_path, kind=kind, is_directory=is_directory))

    def _emit(self, change: FileChange) -> None:
        if self.channel.publish(change):
            self.events_published += 1
            logger.debug(f"{change.kind.value}: {change.path}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "watching": self.is_alive(),
            "events_published": self.events_published,
            "events_filtered": self.events_filtered,
        }
