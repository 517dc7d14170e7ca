"""In-memory ObjectStore used to drive the snapshot engine in tests."""

import hashlib
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import AnchorReadError, RefConflictError, StoreError
from .base import (
    CommitInfo,
    IndexEntry,
    ObjectStore,
    RepositoryAnchor,
    Signature,
    WorkTreeCandidates,
    git_blob_hash,
)


def _digest(*parts: str) -> str:
    return hashlib.sha1("\n".join(parts).encode()).hexdigest()


class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed store with content addressing and CAS refs.

    Attributes:
        anchor: What read_anchor returns; tests move it to simulate checkouts
        index_entries: What read_index_entries returns
        candidates: What read_work_tree_candidates returns
        fail_writes: When True every object write raises StoreError
        fail_anchor_reads: When True read_anchor raises AnchorReadError
        writes: Number of object writes performed
    """

    def __init__(self, anchor: Optional[RepositoryAnchor] = None):
        self._lock = threading.Lock()
        self.blobs: Dict[str, bytes] = {}
        self.trees: Dict[str, Dict[str, Tuple[str, str]]] = {}
        self.commits: Dict[str, CommitInfo] = {}
        self.refs: Dict[str, str] = {}
        self.anchor = anchor or RepositoryAnchor(commit=None, branch="refs/heads/main")
        self.index_entries: List[IndexEntry] = []
        self.candidates = WorkTreeCandidates()
        self.fail_writes = False
        self.fail_anchor_reads = False
        self.writes = 0

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise StoreError("object store unavailable")
        self.writes += 1

    def write_blob(self, data: bytes) -> str:
        with self._lock:
            self._check_writable()
            oid = git_blob_hash(data)
            self.blobs[oid] = data
            return oid

    def write_tree(self, entries: Iterable[IndexEntry]) -> str:
        content = {e.path: (e.mode, e.oid) for e in entries}
        with self._lock:
            self._check_writable()
            lines = (f"{m} {o} {p}" for p, (m, o) in sorted(content.items()))
            oid = _digest("tree", *lines)
            self.trees[oid] = content
            return oid

    def write_commit(
        self,
        tree: str,
        parents: List[str],
        message: str,
        author: Signature,
    ) -> str:
        with self._lock:
            self._check_writable()
            if tree not in self.trees:
                raise StoreError(f"missing tree {tree}")
            oid = _digest(
                "commit",
                tree,
                *parents,
                author.name,
                author.email,
                str(author.timestamp),
                message,
            )
            self.commits[oid] = CommitInfo(
                oid=oid,
                tree=tree,
                parents=tuple(parents),
                author=author,
                message=message,
            )
            return oid

    def add_commit(
        self,
        files: Dict[str, bytes],
        parents: Optional[List[str]] = None,
        message: str = "user commit",
    ) -> str:
        """Create a 'real' user commit holding files, for test setup."""
        entries = [
            IndexEntry(path=path, mode="100644", oid=self.write_blob(data))
            for path, data in files.items()
        ]
        tree = self.write_tree(entries)
        author = Signature(name="User", email="user@example.com", timestamp=0)
        return self.write_commit(tree, parents or [], message, author)

    def read_commit(self, oid: str) -> CommitInfo:
        try:
            return self.commits[oid]
        except KeyError:
            raise StoreError(f"unknown commit {oid}")

    def tree_entries(self, tree: str) -> Dict[str, Tuple[str, str]]:
        return dict(self.trees[tree])

    def diff_trees(
        self, old_tree: Optional[str], new_tree: str
    ) -> List[Tuple[str, str]]:
        old = self.trees.get(old_tree, {}) if old_tree else {}
        new = self.trees[new_tree]
        changes = []
        for path in sorted(set(old) | set(new)):
            if path not in old:
                changes.append(("A", path))
            elif path not in new:
                changes.append(("D", path))
            elif old[path][0] != new[path][0]:
                changes.append(("T", path))
            elif old[path][1] != new[path][1]:
                changes.append(("M", path))
        return changes

    def read_ref(self, name: str) -> Optional[str]:
        with self._lock:
            return self.refs.get(name)

    def compare_and_swap_ref(
        self, name: str, new_oid: str, expected_oid: Optional[str], reason: str = ""
    ) -> None:
        with self._lock:
            actual = self.refs.get(name)
            if actual != expected_oid:
                raise RefConflictError(name, expected_oid or "", actual or "")
            self.refs[name] = new_oid

    def read_anchor(self) -> RepositoryAnchor:
        if self.fail_anchor_reads:
            raise AnchorReadError("HEAD unreadable")
        return self.anchor

    def read_index_entries(self) -> List[IndexEntry]:
        return list(self.index_entries)

    def read_work_tree_candidates(self, include_untracked: bool) -> WorkTreeCandidates:
        return WorkTreeCandidates(
            modified=list(self.candidates.modified),
            untracked=list(self.candidates.untracked) if include_untracked else [],
        )
