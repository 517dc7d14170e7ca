"""
Object/ref store interface used by the snapshot engine.

The engine never talks to git directly; it goes through an ObjectStore so
that the same chain logic runs against the real repository (GitObjectStore)
and against an in-memory fake in tests (InMemoryObjectStore).
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

# Git file modes
MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_SYMLINK = "120000"
MODE_GITLINK = "160000"


def git_blob_hash(data: bytes) -> str:
    """Compute the git (SHA-1) blob id for data without storing it."""
    header = f"blob {len(data)}\0".encode()
    return hashlib.sha1(header + data).hexdigest()


@dataclass(frozen=True)
class IndexEntry:
    """A single path in a tree: repository-relative path, git mode and blob id."""

    path: str
    mode: str
    oid: str


@dataclass(frozen=True)
class Signature:
    """Author/committer identity with a UTC epoch timestamp."""

    name: str
    email: str
    timestamp: int


@dataclass(frozen=True)
class CommitInfo:
    """Parsed commit object."""

    oid: str
    tree: str
    parents: Tuple[str, ...]
    author: Signature
    message: str

    def trailer(self, key: str) -> Optional[str]:
        """Return the value of a 'Key: value' trailer in the message, if any."""
        prefix = f"{key}:"
        for line in reversed(self.message.splitlines()):
            if line.startswith(prefix):
                return line[len(prefix) :].strip()
        return None


@dataclass(frozen=True)
class RepositoryAnchor:
    """The commit the user currently has checked out.

    Attributes:
        commit: HEAD commit id, None on an unborn branch
        branch: Full ref name HEAD points to, None when detached
        operation: Name of an in-progress git operation (rebase, merge, ...)
            that makes HEAD unstable, None when settled
    """

    commit: Optional[str]
    branch: Optional[str] = None
    operation: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.operation is None

    def describe(self) -> str:
        name = self.branch.replace("refs/heads/", "") if self.branch else "detached"
        short = self.commit[:10] if self.commit else "unborn"
        return f"{name}@{short}"


@dataclass
class WorkTreeCandidates:
    """Paths whose work tree content may differ from the real index."""

    modified: List[str] = field(default_factory=list)
    untracked: List[str] = field(default_factory=list)


class ObjectStore(ABC):
    """Content-addressed object store plus ref store of the host repository."""

    @abstractmethod
    def write_blob(self, data: bytes) -> str:
        """Store file content and return its blob id."""

    @abstractmethod
    def write_tree(self, entries: Iterable[IndexEntry]) -> str:
        """Store a complete (recursive) tree for the given flat entries."""

    @abstractmethod
    def write_commit(
        self,
        tree: str,
        parents: List[str],
        message: str,
        author: Signature,
    ) -> str:
        """Store a commit object and return its id. Does not move any ref."""

    @abstractmethod
    def read_commit(self, oid: str) -> CommitInfo:
        """Read and parse a commit object."""

    @abstractmethod
    def diff_trees(
        self, old_tree: Optional[str], new_tree: str
    ) -> List[Tuple[str, str]]:
        """List (status, path) changes between two trees.

        Status is one of A, M, D, T. A missing old_tree means the empty tree.
        """

    @abstractmethod
    def read_ref(self, name: str) -> Optional[str]:
        """Return the commit a ref points to, or None if the ref does not exist."""

    @abstractmethod
    def compare_and_swap_ref(
        self, name: str, new_oid: str, expected_oid: Optional[str], reason: str = ""
    ) -> None:
        """Atomically move ref name from expected_oid to new_oid.

        An expected_oid of None means the ref must not exist yet.

        Raises:
            RefConflictError: If the ref does not currently hold expected_oid
            StoreError: If the update failed for any other reason
        """

    @abstractmethod
    def read_anchor(self) -> RepositoryAnchor:
        """Read the real HEAD.

        Raises:
            AnchorReadError: If HEAD cannot be read
        """

    @abstractmethod
    def read_index_entries(self) -> List[IndexEntry]:
        """Read the tracked file set from the real index without modifying it."""

    @abstractmethod
    def read_work_tree_candidates(self, include_untracked: bool) -> WorkTreeCandidates:
        """List tracked paths that may be modified and untracked, non-ignored paths."""
