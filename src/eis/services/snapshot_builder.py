"""
Snapshot builder: turns the shadow index into blob, tree and commit objects.

Nothing here moves a ref. A failed build leaves at most unreferenced objects
behind, which the host store garbage-collects like any other loose object.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..config import SnapshotConfig
from ..store.base import CommitInfo, ObjectStore, RepositoryAnchor, Signature
from .shadow_index import ShadowIndex

logger = logging.getLogger(__name__)

ANCHOR_TRAILER = "Eis-Anchor"
BRANCH_TRAILER = "Eis-Branch"


@dataclass(frozen=True)
class PreparedTree:
    """A tree written from the shadow index."""

    tree: str
    file_count: int
    blobs_written: int


class SnapshotBuilder:
    """Builds snapshot commits from shadow index state."""

    def __init__(
        self,
        store: ObjectStore,
        config: SnapshotConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self.clock = clock

    def prepare_tree(self, shadow: ShadowIndex) -> PreparedTree:
        """Store content of changed files, then the complete tree.

        Files that disappear before their content can be stored are dropped
        from the shadow index rather than failing the build.

        Raises:
            StoreError: If any object write fails
        """
        blobs_written = 0
        for tracked in shadow.unwritten():
            content = shadow.read_content(tracked.path)
            if content is None:
                shadow.discard(tracked.path)
                continue
            data, mode = content
            oid = self.store.write_blob(data)
            shadow.mark_written(tracked.path, oid, data, mode)
            blobs_written += 1

        entries = shadow.entries()
        tree = self.store.write_tree(entries)
        logger.debug(
            f"Wrote tree {tree[:10]} ({len(entries)} files, {blobs_written} new blobs)"
        )
        return PreparedTree(
            tree=tree, file_count=len(entries), blobs_written=blobs_written
        )

    def commit_tree(
        self,
        tree: str,
        anchor: Optional[RepositoryAnchor],
        parents: List[str],
    ) -> str:
        """Write a snapshot commit for tree with the given parents."""
        timestamp = int(self.clock())
        author = Signature(
            name=self.config.author_name,
            email=self.config.author_email,
            timestamp=timestamp,
        )
        message = self.format_message(anchor, timestamp)
        return self.store.write_commit(tree, parents, message, author)

    def build(
        self,
        anchor: Optional[RepositoryAnchor],
        shadow: ShadowIndex,
        parents: List[str],
    ) -> str:
        """Write tree and commit in one go. Returns the new commit id."""
        prepared = self.prepare_tree(shadow)
        return self.commit_tree(prepared.tree, anchor, parents)

    def format_message(
        self, anchor: Optional[RepositoryAnchor], timestamp: int
    ) -> str:
        when = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        anchor_commit = anchor.commit if anchor and anchor.commit else "none"
        lines = [
            f"{self.config.message_prefix} {when.strftime('%Y-%m-%dT%H:%M:%SZ')}",
            "",
            f"{ANCHOR_TRAILER}: {anchor_commit}",
        ]
        if anchor is not None and anchor.branch:
            lines.append(f"{BRANCH_TRAILER}: {anchor.branch}")
        return "\n".join(lines) + "\n"

    def is_snapshot(self, commit: CommitInfo) -> bool:
        """Whether a CommitInfo was written by eis."""
        return (
            commit.author.email == self.config.author_email
            and commit.trailer(ANCHOR_TRAILER) is not None
        )

    @staticmethod
    def anchor_of(commit: CommitInfo) -> Optional[str]:
        """The anchor commit recorded in a snapshot, None if unborn or absent."""
        value = commit.trailer(ANCHOR_TRAILER)
        if value is None or value == "none":
            return None
        return value
