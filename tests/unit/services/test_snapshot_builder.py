"""Unit tests for SnapshotBuilder against the in-memory store."""

import os

import pytest

from eis.config import SnapshotConfig
from eis.errors import StoreError
from eis.events import ChangeKind
from eis.services.ignore_filter import IgnoreFilter
from eis.services.shadow_index import ShadowIndex
from eis.services.snapshot_builder import (
    ANCHOR_TRAILER,
    BRANCH_TRAILER,
    SnapshotBuilder,
)
from eis.store.base import MODE_FILE, RepositoryAnchor, Signature
from eis.store.memory import InMemoryObjectStore


class TestSnapshotBuilder:
    """Unit tests for tree and commit construction."""

    @pytest.fixture(autouse=True)
    def setup_builder(self, tmp_path):
        self.repo_dir = tmp_path.resolve()
        self.store = InMemoryObjectStore()
        self.config = SnapshotConfig()
        self.builder = SnapshotBuilder(
            self.store, self.config, clock=lambda: 1700000000
        )
        self.shadow = ShadowIndex(self.repo_dir, IgnoreFilter(self.repo_dir))
        self.anchor = RepositoryAnchor(commit="b" * 40, branch="refs/heads/main")

    def _edit(self, path: str, content: str) -> None:
        full_path = self.repo_dir / path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content)
        self.shadow.observe(path, ChangeKind.MODIFIED)

    def test_prepare_tree_writes_blobs_and_full_tree(self):
        self._edit("a.txt", "one\n")
        self._edit("dir/b.txt", "two\n")

        prepared = self.builder.prepare_tree(self.shadow)

        assert prepared.file_count == 2
        assert prepared.blobs_written == 2
        entries = self.store.tree_entries(prepared.tree)
        assert set(entries) == {"a.txt", "dir/b.txt"}
        assert entries["a.txt"][0] == MODE_FILE
        assert self.store.blobs[entries["a.txt"][1]] == b"one\n"

    def test_prepare_tree_only_writes_changed_blobs(self):
        self._edit("a.txt", "one\n")
        self._edit("b.txt", "two\n")
        self.builder.prepare_tree(self.shadow)

        self._edit("a.txt", "one, edited\n")
        prepared = self.builder.prepare_tree(self.shadow)

        # Tree is still complete although only one blob was written
        assert prepared.blobs_written == 1
        assert set(self.store.tree_entries(prepared.tree)) == {"a.txt", "b.txt"}

    def test_prepare_tree_drops_files_vanished_before_write(self):
        self._edit("a.txt", "one\n")
        self._edit("b.txt", "two\n")
        os.remove(self.repo_dir / "b.txt")

        prepared = self.builder.prepare_tree(self.shadow)

        assert set(self.store.tree_entries(prepared.tree)) == {"a.txt"}
        assert "b.txt" not in self.shadow

    def test_prepare_tree_stores_content_read_at_write_time(self):
        """The blob holds what is on disk when it is written, not when observed."""
        self._edit("a.txt", "first\n")
        (self.repo_dir / "a.txt").write_text("second\n")

        prepared = self.builder.prepare_tree(self.shadow)

        oid = self.store.tree_entries(prepared.tree)["a.txt"][1]
        assert self.store.blobs[oid] == b"second\n"

    def test_commit_tree_uses_daemon_identity_and_trailers(self):
        self._edit("a.txt", "one\n")
        prepared = self.builder.prepare_tree(self.shadow)

        oid = self.builder.commit_tree(prepared.tree, self.anchor, ["c" * 40])

        commit = self.store.read_commit(oid)
        assert commit.tree == prepared.tree
        assert commit.parents == ("c" * 40,)
        assert commit.author == Signature("eis", "eis@localhost", 1700000000)
        assert commit.message.startswith("eis snapshot 2023-11-14T22:13:20Z\n")
        assert commit.trailer(ANCHOR_TRAILER) == "b" * 40
        assert commit.trailer(BRANCH_TRAILER) == "refs/heads/main"

    def test_message_for_unborn_detached_anchor(self):
        message = self.builder.format_message(RepositoryAnchor(commit=None), 0)

        assert f"{ANCHOR_TRAILER}: none" in message
        assert BRANCH_TRAILER not in message

    def test_build_returns_commit(self):
        self._edit("a.txt", "one\n")

        oid = self.builder.build(self.anchor, self.shadow, [self.anchor.commit])

        assert self.store.read_commit(oid).parents == (self.anchor.commit,)

    def test_identical_content_at_different_times_gives_distinct_commits(self):
        self._edit("a.txt", "one\n")
        prepared = self.builder.prepare_tree(self.shadow)
        first = self.builder.commit_tree(prepared.tree, self.anchor, [])

        later = SnapshotBuilder(self.store, self.config, clock=lambda: 1700000060)
        second = later.commit_tree(prepared.tree, self.anchor, [])

        assert first != second

    def test_write_failure_propagates(self):
        self._edit("a.txt", "one\n")
        self.store.fail_writes = True

        with pytest.raises(StoreError):
            self.builder.prepare_tree(self.shadow)
        # Nothing was recorded as stored
        assert self.shadow.files["a.txt"].oid is None

    def test_is_snapshot_and_anchor_of(self):
        self._edit("a.txt", "one\n")
        oid = self.builder.build(self.anchor, self.shadow, [])
        snapshot = self.store.read_commit(oid)
        user_commit = self.store.read_commit(self.store.add_commit({"x": b"x"}))

        assert self.builder.is_snapshot(snapshot)
        assert not self.builder.is_snapshot(user_commit)
        assert SnapshotBuilder.anchor_of(snapshot) == "b" * 40
        assert SnapshotBuilder.anchor_of(user_commit) is None
