"""Object/ref store backends for the snapshot engine."""

from .base import (
    CommitInfo,
    IndexEntry,
    ObjectStore,
    RepositoryAnchor,
    Signature,
    WorkTreeCandidates,
    git_blob_hash,
)
from .git_store import GitObjectStore
from .memory import InMemoryObjectStore

__all__ = [
    "CommitInfo",
    "GitObjectStore",
    "InMemoryObjectStore",
    "IndexEntry",
    "ObjectStore",
    "RepositoryAnchor",
    "Signature",
    "WorkTreeCandidates",
    "git_blob_hash",
]
