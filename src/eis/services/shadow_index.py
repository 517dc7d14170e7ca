"""
Shadow index: eis's private view of the tracked file set.

Mirrors what the real index would contain if every change in the work tree
were staged, without ever touching .git/index. State lives in memory only
and is rebuilt from the real index (read-only) on every daemon start.
"""

import logging
import os
import stat
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..events import ChangeKind
from ..store.base import (
    MODE_EXECUTABLE,
    MODE_FILE,
    MODE_GITLINK,
    MODE_SYMLINK,
    IndexEntry,
    ObjectStore,
    git_blob_hash,
)
from .ignore_filter import ALWAYS_IGNORED_DIRS, IgnoreFilter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackedFile:
    """Last successfully hashed state of one work tree file.

    Attributes:
        path: Work tree relative posix path
        content_hash: Hash of the content as last read from disk
        mode: Git file mode
        mtime_ns: Modification time when last read
        size: Size in bytes when last read
        oid: Blob id in the object store, None until the content is written
    """

    path: str
    content_hash: str
    mode: str
    mtime_ns: int
    size: int
    oid: Optional[str] = None


class ShadowIndex:
    """Path -> TrackedFile mapping, isolated from the real index."""

    def __init__(
        self,
        repo_dir: Path,
        ignore_filter: IgnoreFilter,
        include_untracked: bool = True,
        hasher: Callable[[bytes], str] = git_blob_hash,
    ):
        self.repo_dir = Path(repo_dir).resolve()
        self.ignore_filter = ignore_filter
        self.include_untracked = include_untracked
        self.hasher = hasher

        self.files: Dict[str, TrackedFile] = {}
        # Paths in the real index; .gitignore does not apply to them
        self.git_tracked: Set[str] = set()
        self._tracked_dirs: Optional[Set[str]] = None
        self._dirty = False

        # Statistics
        self.read_failures = 0

    # Lifecycle

    def load(self, store: ObjectStore) -> int:
        """Seed from the real index, then reconcile with the work tree.

        Returns:
            Number of tracked files after reconciliation
        """
        self.files.clear()
        entries = store.read_index_entries()
        self.git_tracked = {entry.path for entry in entries}
        self._tracked_dirs = None

        for entry in entries:
            mtime_ns, size = self._stat_signature(entry.path)
            self.files[entry.path] = TrackedFile(
                path=entry.path,
                content_hash=entry.oid,
                mode=entry.mode,
                mtime_ns=mtime_ns,
                size=size,
                oid=entry.oid,
            )

        candidates = store.read_work_tree_candidates(self.include_untracked)
        for path in candidates.modified:
            self._refresh(path)
        for path in candidates.untracked:
            self._refresh(path)

        # The first build after a start must compare against the chain
        self._dirty = True
        logger.info(
            f"Shadow index loaded: {len(self.files)} files "
            f"({len(candidates.modified)} modified, "
            f"{len(candidates.untracked)} untracked)"
        )
        return len(self.files)

    def refresh_tracked_set(self, store: ObjectStore) -> None:
        """Re-read which paths the real index tracks (e.g. after a commit)."""
        self.git_tracked = {entry.path for entry in store.read_index_entries()}
        self._tracked_dirs = None

    # Change handling

    def observe(
        self,
        path: str,
        kind: ChangeKind,
        old_path: Optional[str] = None,
        is_directory: bool = False,
    ) -> bool:
        """Apply one change notification.

        Every kind is reconciled against what is on disk now, so duplicate or
        out-of-order notifications converge on the same state.

        Returns:
            True if the tracked content actually changed
        """
        if kind is ChangeKind.RENAMED:
            changed = False
            if old_path is not None:
                changed = self.observe(
                    old_path, ChangeKind.DELETED, is_directory=is_directory
                )
            created = self.observe(path, ChangeKind.CREATED, is_directory=is_directory)
            return created or changed

        if kind is ChangeKind.DELETED:
            if os.path.lexists(self.repo_dir / path):
                # Recreated since the notification was sent
                return self._refresh(path)
            # A deleted "file" may have been a directory we only saw as a path
            removed = self._remove(path)
            return self._remove_tree(path) or removed

        if is_directory:
            return self._scan_directory(path)
        return self._refresh(path)

    def rescan(self) -> bool:
        """Walk the whole work tree. Used when change events were lost.

        Files whose size and mtime did not change are not re-read, but every
        file is checked against the current ignore rules and tracked set.
        """
        seen: Set[str] = set()
        changed = False
        for rel_path in self._walk(""):
            seen.add(rel_path)
            if not self._admissible(rel_path):
                changed = self._remove(rel_path) or changed
                continue
            previous = self.files.get(rel_path)
            if previous is not None and previous.oid is not None:
                if self._stat_signature(rel_path) == (previous.mtime_ns, previous.size):
                    continue
            changed = self._refresh(rel_path) or changed

        for rel_path in list(self.files):
            if rel_path not in seen and self.files[rel_path].mode != MODE_GITLINK:
                changed = self._remove(rel_path) or changed
        logger.info(f"Full rescan complete: {len(self.files)} files, changed={changed}")
        return changed

    def _refresh(self, path: str) -> bool:
        previous = self.files.get(path)
        if previous is not None and previous.mode == MODE_GITLINK:
            return False

        if not self._admissible(path):
            return self._remove(path)

        full_path = self.repo_dir / path
        try:
            st = os.lstat(full_path)
        except OSError:
            return self._remove(path) or self._remove_tree(path)

        if stat.S_ISDIR(st.st_mode):
            removed = self._remove(path)
            return self._scan_directory(path) or removed

        content = self.read_content(path)
        if content is None:
            # Vanished or unreadable between the event and now
            return self._remove(path)
        data, mode = content

        content_hash = self.hasher(data)
        if (
            previous is not None
            and previous.content_hash == content_hash
            and previous.mode == mode
        ):
            self.files[path] = replace(
                previous, mtime_ns=st.st_mtime_ns, size=st.st_size
            )
            return False

        self.files[path] = TrackedFile(
            path=path,
            content_hash=content_hash,
            mode=mode,
            mtime_ns=st.st_mtime_ns,
            size=st.st_size,
        )
        self._dirty = True
        logger.debug(f"Content changed: {path}")
        return True

    def _admissible(self, path: str) -> bool:
        tracked = path in self.git_tracked
        if self.ignore_filter.is_ignored(path, tracked=tracked):
            return False
        return tracked or self.include_untracked

    def _remove(self, path: str) -> bool:
        if self.files.pop(path, None) is None:
            return False
        self._dirty = True
        logger.debug(f"Removed: {path}")
        return True

    def _remove_tree(self, path: str) -> bool:
        prefix = path.rstrip("/") + "/"
        doomed = [p for p in self.files if p.startswith(prefix)]
        for p in doomed:
            del self.files[p]
        if doomed:
            self._dirty = True
        return bool(doomed)

    def _scan_directory(self, path: str) -> bool:
        changed = False
        for rel_path in self._walk(path):
            changed = self._refresh(rel_path) or changed
        return changed

    def _walk(self, rel_dir: str) -> Iterable[str]:
        root = self.repo_dir / rel_dir if rel_dir else self.repo_dir
        for dirpath, dirnames, filenames in os.walk(root):
            rel_root = Path(dirpath).relative_to(self.repo_dir).as_posix()
            rel_root = "" if rel_root == "." else rel_root
            kept = []
            for d in dirnames:
                rel = f"{rel_root}/{d}" if rel_root else d
                if d in ALWAYS_IGNORED_DIRS or self.files.get(rel, None) is not None:
                    # Metadata directories and submodule checkouts
                    continue
                if os.path.islink(os.path.join(dirpath, d)):
                    yield rel
                    continue
                if self._prunable(rel):
                    continue
                kept.append(d)
            dirnames[:] = kept
            for name in filenames:
                yield f"{rel_root}/{name}" if rel_root else name

    def _prunable(self, rel_dir: str) -> bool:
        """An ignored directory holding no tracked file is not worth walking."""
        if not self.ignore_filter.is_ignored(rel_dir + "/", tracked=False):
            return False
        if self._tracked_dirs is None:
            self._tracked_dirs = {
                p.rsplit("/", 1)[0] for p in self.git_tracked if "/" in p
            }
            for d in list(self._tracked_dirs):
                while "/" in d:
                    d = d.rsplit("/", 1)[0]
                    self._tracked_dirs.add(d)
        return rel_dir not in self._tracked_dirs

    # Content access

    def read_content(self, path: str) -> Optional[Tuple[bytes, str]]:
        """Read a file the way git stores it.

        Returns:
            (data, mode), or None if the path is missing, unreadable or not a
            regular file or symlink
        """
        full_path = self.repo_dir / path
        try:
            st = os.lstat(full_path)
            if stat.S_ISLNK(st.st_mode):
                return os.fsencode(os.readlink(full_path)), MODE_SYMLINK
            if not stat.S_ISREG(st.st_mode):
                return None
            with open(full_path, "rb") as f:
                data = f.read()
        except OSError as e:
            self.read_failures += 1
            logger.debug(f"Treating unreadable {path} as deleted: {e}")
            return None
        mode = MODE_EXECUTABLE if st.st_mode & stat.S_IXUSR else MODE_FILE
        return data, mode

    def _stat_signature(self, path: str) -> Tuple[int, int]:
        try:
            st = os.lstat(self.repo_dir / path)
            return st.st_mtime_ns, st.st_size
        except OSError:
            return 0, 0

    # Build support

    @property
    def dirty(self) -> bool:
        """Whether anything changed since the last successful build."""
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    def snapshot_diff(self) -> Dict[str, TrackedFile]:
        """Full set of tracked paths with their hashes, enough to build a tree."""
        return dict(self.files)

    def unwritten(self) -> List[TrackedFile]:
        """Files whose current content is not in the object store yet."""
        return [f for f in self.files.values() if f.oid is None]

    def mark_written(self, path: str, oid: str, data: bytes, mode: str) -> None:
        """Record that the content now on disk for path was stored as oid."""
        previous = self.files.get(path)
        if previous is None:
            return
        self.files[path] = replace(
            previous, oid=oid, content_hash=self.hasher(data), mode=mode
        )

    def discard(self, path: str) -> None:
        """Drop a path that disappeared before its content could be stored."""
        self._remove(path)

    def entries(self) -> List[IndexEntry]:
        """Tree entries for every tracked file. All content must be written."""
        missing = [f.path for f in self.files.values() if f.oid is None]
        if missing:
            raise ValueError(
                f"{len(missing)} files have no stored blob, e.g. {missing[0]}"
            )
        return [
            IndexEntry(path=f.path, mode=f.mode, oid=f.oid)  # type: ignore[arg-type]
            for f in sorted(self.files.values(), key=lambda f: f.path)
        ]

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: str) -> bool:
        return path in self.files
