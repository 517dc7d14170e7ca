"""Read-side walk over the snapshot chain."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..store.base import CommitInfo, ObjectStore
from .snapshot_builder import BRANCH_TRAILER, SnapshotBuilder

logger = logging.getLogger(__name__)


@dataclass
class SnapshotRecord:
    """One snapshot on the chain with its changes against its predecessor."""

    commit: str
    timestamp: int
    anchor: Optional[str]
    branch: Optional[str]
    parents: Tuple[str, ...]
    predecessor: Optional[str]
    reanchored: bool
    changes: List[Tuple[str, str]] = field(default_factory=list)


def chain_predecessor(commit: CommitInfo) -> Optional[str]:
    """The previous chain entry: second parent after a re-anchor, else first."""
    if len(commit.parents) > 1:
        return commit.parents[1]
    if commit.parents:
        return commit.parents[0]
    return None


def walk_chain(
    store: ObjectStore,
    builder: SnapshotBuilder,
    ref_name: str,
    limit: int = 10,
    with_changes: bool = True,
) -> List[SnapshotRecord]:
    """Walk back from the chain ref for up to limit snapshots.

    The walk stops at the first commit not written by eis (the anchor the
    chain started from).
    """
    records: List[SnapshotRecord] = []
    oid = store.read_ref(ref_name)
    while oid is not None and len(records) < limit:
        commit = store.read_commit(oid)
        if not builder.is_snapshot(commit):
            break

        predecessor = chain_predecessor(commit)
        changes: List[Tuple[str, str]] = []
        if with_changes:
            old_tree = store.read_commit(predecessor).tree if predecessor else None
            changes = store.diff_trees(old_tree, commit.tree)

        records.append(
            SnapshotRecord(
                commit=commit.oid,
                timestamp=commit.author.timestamp,
                anchor=SnapshotBuilder.anchor_of(commit),
                branch=commit.trailer(BRANCH_TRAILER),
                parents=commit.parents,
                predecessor=predecessor,
                reanchored=len(commit.parents) > 1,
                changes=changes,
            )
        )
        oid = predecessor
    return records
