"""Unit tests for the in-memory ObjectStore."""

import pytest

from eis.errors import AnchorReadError, RefConflictError, StoreError
from eis.store.base import MODE_EXECUTABLE, MODE_FILE, IndexEntry, Signature
from eis.store.memory import InMemoryObjectStore


class TestInMemoryObjectStore:
    @pytest.fixture(autouse=True)
    def setup_store(self):
        self.store = InMemoryObjectStore()
        self.author = Signature(name="eis", email="eis@localhost", timestamp=1)

    def _tree(self, files):
        return self.store.write_tree(
            IndexEntry(path=path, mode=MODE_FILE, oid=self.store.write_blob(data))
            for path, data in files.items()
        )

    def test_blob_ids_match_git(self):
        # git hash-object of "hello\n"
        oid = self.store.write_blob(b"hello\n")

        assert oid == "ce013625030ba8dba906f756967f9e9ca394464a"
        assert self.store.blobs[oid] == b"hello\n"

    def test_tree_ids_are_content_addressed(self):
        first = self._tree({"a": b"1", "b": b"2"})
        second = self._tree({"b": b"2", "a": b"1"})
        third = self._tree({"a": b"1", "b": b"3"})

        assert first == second
        assert first != third

    def test_commit_requires_known_tree(self):
        with pytest.raises(StoreError):
            self.store.write_commit("0" * 40, [], "msg", self.author)

    def test_read_commit(self):
        tree = self._tree({"a": b"1"})
        oid = self.store.write_commit(tree, [], "msg\n\nEis-Anchor: x\n", self.author)

        commit = self.store.read_commit(oid)

        assert commit.tree == tree
        assert commit.parents == ()
        assert commit.trailer("Eis-Anchor") == "x"
        with pytest.raises(StoreError):
            self.store.read_commit("f" * 40)

    def test_diff_trees(self):
        old = self._tree({"same": b"s", "changed": b"1", "gone": b"g"})
        blob = self.store.write_blob(b"s")
        new = self.store.write_tree(
            [
                IndexEntry(path="same", mode=MODE_EXECUTABLE, oid=blob),
                IndexEntry(
                    path="changed", mode=MODE_FILE, oid=self.store.write_blob(b"2")
                ),
                IndexEntry(path="added", mode=MODE_FILE, oid=blob),
            ]
        )

        assert self.store.diff_trees(old, new) == [
            ("A", "added"),
            ("M", "changed"),
            ("D", "gone"),
            ("T", "same"),
        ]
        assert self.store.diff_trees(None, old) == [
            ("A", "changed"),
            ("A", "gone"),
            ("A", "same"),
        ]

    def test_compare_and_swap(self):
        self.store.compare_and_swap_ref("EIS_HEAD", "a" * 40, None)
        self.store.compare_and_swap_ref("EIS_HEAD", "b" * 40, "a" * 40)

        assert self.store.read_ref("EIS_HEAD") == "b" * 40

    def test_compare_and_swap_conflicts(self):
        self.store.refs["EIS_HEAD"] = "a" * 40

        with pytest.raises(RefConflictError) as exc_info:
            self.store.compare_and_swap_ref("EIS_HEAD", "b" * 40, None)
        assert exc_info.value.actual == "a" * 40

        with pytest.raises(RefConflictError):
            self.store.compare_and_swap_ref("EIS_HEAD", "b" * 40, "c" * 40)
        assert self.store.read_ref("EIS_HEAD") == "a" * 40

    def test_failure_switches(self):
        self.store.fail_writes = True
        with pytest.raises(StoreError):
            self.store.write_blob(b"x")

        self.store.fail_anchor_reads = True
        with pytest.raises(AnchorReadError):
            self.store.read_anchor()

    def test_candidates_respect_include_untracked(self):
        self.store.candidates.modified = ["a"]
        self.store.candidates.untracked = ["b"]

        assert self.store.read_work_tree_candidates(True).untracked == ["b"]
        assert self.store.read_work_tree_candidates(False).untracked == []
        assert self.store.read_work_tree_candidates(False).modified == ["a"]
