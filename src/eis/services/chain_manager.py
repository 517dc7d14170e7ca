"""
Chain manager: owns the chain ref and decides each snapshot's parents.

States:
    FOLLOWING         the chain tip sits on top of the current anchor; the
                      next snapshot continues it (parents = [tip])
    DETACHED_PENDING  the anchor moved; the next snapshot re-anchors
                      (parents = [new anchor, prior tip])

The prior tip is kept in memory while pending and becomes the re-anchored
snapshot's second parent, so both "where is the chain" and "where was it
before the last re-anchor" are answered without walking history.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..config import SnapshotConfig
from ..errors import RefConflictError
from ..store.base import ObjectStore, RepositoryAnchor
from .shadow_index import ShadowIndex
from .snapshot_builder import SnapshotBuilder

logger = logging.getLogger(__name__)


class ChainState(str, Enum):
    FOLLOWING = "following"
    DETACHED_PENDING = "detached-pending"


class SnapshotStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    DROPPED = "dropped"


@dataclass
class SnapshotOutcome:
    """Result of handling one quiescence signal."""

    status: SnapshotStatus
    commit: Optional[str] = None
    parents: List[str] = field(default_factory=list)
    reason: str = ""


class ChainManager:
    """Chain ref owner and snapshot parentage state machine."""

    def __init__(
        self,
        store: ObjectStore,
        builder: SnapshotBuilder,
        config: SnapshotConfig,
    ):
        self.store = store
        self.builder = builder
        self.config = config
        self.ref_name = config.chain_ref

        self.state = ChainState.FOLLOWING
        self.anchor: Optional[RepositoryAnchor] = None
        self.tip: Optional[str] = None
        self.prior_tip: Optional[str] = None

        # Statistics
        self.snapshots_written = 0
        self.snapshots_skipped = 0
        self.snapshots_dropped = 0
        self.ref_conflicts = 0
        self.consecutive_drops = 0

    def initialize(self, anchor: RepositoryAnchor) -> None:
        """Pick up an existing chain and decide whether it follows anchor.

        Raises:
            StoreError: If the chain ref or its tip cannot be read
        """
        self.anchor = anchor
        self.tip = self.store.read_ref(self.ref_name)
        self.prior_tip = None
        self.state = ChainState.FOLLOWING

        if self.tip is None:
            logger.info(f"No {self.ref_name} yet; the first snapshot starts the chain")
            return

        tip_commit = self.store.read_commit(self.tip)
        recorded_anchor = SnapshotBuilder.anchor_of(tip_commit)
        if self.builder.is_snapshot(tip_commit) and recorded_anchor == anchor.commit:
            logger.info(f"Continuing chain at {self.tip[:10]} on {anchor.describe()}")
            return

        self.state = ChainState.DETACHED_PENDING
        self.prior_tip = self.tip
        logger.info(
            f"Chain tip {self.tip[:10]} was recorded on "
            f"{(recorded_anchor or 'another anchor')[:10]}; "
            f"next snapshot re-anchors on {anchor.describe()}"
        )

    def on_anchor_changed(self, anchor: RepositoryAnchor) -> None:
        """Record a settled move of the real HEAD."""
        previous = self.anchor
        self.anchor = anchor

        if previous is not None and previous.commit == anchor.commit:
            # Same commit under another name: the chain base did not move
            logger.info(f"Anchor renamed to {anchor.describe()}, chain unaffected")
            return

        if self.state is ChainState.FOLLOWING:
            self.prior_tip = self.tip
            self.state = ChainState.DETACHED_PENDING
        logger.info(
            f"Anchor moved to {anchor.describe()}; "
            f"prior chain tip {(self.prior_tip or 'none')[:10]}"
        )

    def next_parents(self) -> List[str]:
        """Parents the next snapshot would get in the current state."""
        anchor_commit = self.anchor.commit if self.anchor else None
        if self.state is ChainState.DETACHED_PENDING:
            parents = [anchor_commit, self.prior_tip]
        elif self.tip is not None:
            parents = [self.tip]
        else:
            parents = [anchor_commit]

        unique: List[str] = []
        for parent in parents:
            if parent is not None and parent not in unique:
                unique.append(parent)
        return unique

    def on_quiescence(self, shadow: ShadowIndex) -> SnapshotOutcome:
        """Snapshot the shadow index and move the chain ref.

        Raises:
            StoreError: If objects cannot be written (fatal for the daemon)
        """
        if self.config.skip_empty and not shadow.dirty:
            self.snapshots_skipped += 1
            return SnapshotOutcome(SnapshotStatus.SKIPPED, reason="no changes")

        prepared = self.builder.prepare_tree(shadow)

        for attempt in range(1, self.config.max_ref_retries + 1):
            parents = self.next_parents()
            if self.config.skip_empty and self._same_tree_as_base(
                prepared.tree, parents
            ):
                shadow.mark_clean()
                self.snapshots_skipped += 1
                return SnapshotOutcome(
                    SnapshotStatus.SKIPPED,
                    parents=parents,
                    reason="tree unchanged",
                )

            commit = self.builder.commit_tree(prepared.tree, self.anchor, parents)
            where = self.anchor.describe() if self.anchor else "unborn"
            try:
                self.store.compare_and_swap_ref(
                    self.ref_name, commit, self.tip, reason=f"eis: snapshot on {where}"
                )
            except RefConflictError as e:
                self.ref_conflicts += 1
                logger.info(
                    f"Lost race on {self.ref_name} (attempt {attempt}/"
                    f"{self.config.max_ref_retries}): {e}"
                )
                self._adopt_external_tip(e.actual or None)
                continue

            self._advance(commit)
            shadow.mark_clean()
            logger.info(
                f"Snapshot {commit[:10]} ({prepared.file_count} files, "
                f"{prepared.blobs_written} changed) parents="
                f"{[p[:10] for p in parents]}"
            )
            return SnapshotOutcome(
                SnapshotStatus.WRITTEN, commit=commit, parents=parents
            )

        self.snapshots_dropped += 1
        self.consecutive_drops += 1
        logger.warning(
            f"Dropped snapshot after {self.config.max_ref_retries} failed updates of "
            f"{self.ref_name}; will retry on the next change"
        )
        return SnapshotOutcome(SnapshotStatus.DROPPED, reason="ref update conflicts")

    def _same_tree_as_base(self, tree: str, parents: List[str]) -> bool:
        if not parents:
            return False
        return self.store.read_commit(parents[0]).tree == tree

    def _adopt_external_tip(self, actual: Optional[str]) -> None:
        """Rebase our next attempt on whatever another writer put in the ref."""
        if self.state is ChainState.DETACHED_PENDING:
            self.prior_tip = actual
        self.tip = actual

    def _advance(self, commit: str) -> None:
        self.tip = commit
        self.prior_tip = None
        self.state = ChainState.FOLLOWING
        self.snapshots_written += 1
        self.consecutive_drops = 0

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "chain_tip": self.tip,
            "prior_chain_tip": self.prior_tip,
            "anchor": self.anchor.commit if self.anchor else None,
            "snapshots_written": self.snapshots_written,
            "snapshots_skipped": self.snapshots_skipped,
            "snapshots_dropped": self.snapshots_dropped,
            "ref_conflicts": self.ref_conflicts,
        }
