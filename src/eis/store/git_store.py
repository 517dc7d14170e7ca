"""
ObjectStore backed by a real git repository through git plumbing commands.

Trees are built in a private index file (GIT_INDEX_FILE) that is created and
removed per build, so the user's .git/index is never read for writing, never
locked and never rewritten.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import AnchorReadError, RefConflictError, StoreError
from ..utils.git_runner import get_git_dir, run_git_command
from .base import (
    CommitInfo,
    IndexEntry,
    ObjectStore,
    RepositoryAnchor,
    Signature,
    WorkTreeCandidates,
)

logger = logging.getLogger(__name__)

# Marker files that mean HEAD is moving under an in-progress operation
IN_PROGRESS_MARKERS = [
    ("rebase-merge", "rebase"),
    ("rebase-apply", "rebase"),
    ("MERGE_HEAD", "merge"),
    ("CHERRY_PICK_HEAD", "cherry-pick"),
    ("REVERT_HEAD", "revert"),
]

# update-ref stderr when the ref's .lock file is held by another writer
REF_LOCK_MARKERS = ("cannot lock ref", "Unable to create")


def _split_z(output: str) -> List[str]:
    return [item for item in output.split("\0") if item]


def parse_commit(oid: str, raw: str) -> CommitInfo:
    """Parse the output of 'git cat-file commit'."""
    header, _, message = raw.partition("\n\n")
    tree = ""
    parents: List[str] = []
    author = Signature(name="", email="", timestamp=0)
    for line in header.splitlines():
        key, _, value = line.partition(" ")
        if key == "tree":
            tree = value
        elif key == "parent":
            parents.append(value)
        elif key == "author":
            name, _, rest = value.partition(" <")
            email, _, when = rest.partition("> ")
            timestamp = when.split(" ")[0]
            author = Signature(
                name=name,
                email=email,
                timestamp=int(timestamp) if timestamp.isdigit() else 0,
            )
    return CommitInfo(
        oid=oid,
        tree=tree,
        parents=tuple(parents),
        author=author,
        message=message,
    )


class GitObjectStore(ObjectStore):
    """Object and ref store of a git work tree."""

    def __init__(self, repo_dir: Path):
        """Open the repository containing repo_dir.

        Raises:
            StoreError: If repo_dir is not a git repository or git is missing
        """
        self.repo_dir = Path(repo_dir).resolve()
        try:
            self.git_dir = get_git_dir(self.repo_dir)
        except (subprocess.CalledProcessError, FileNotFoundError, OSError) as e:
            raise StoreError(f"Not a git repository: {self.repo_dir} ({e})")
        self._empty_tree: Optional[str] = None

    def _git(
        self,
        *args: str,
        input: Optional[object] = None,
        text: bool = True,
        env: Optional[Dict[str, str]] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        try:
            return run_git_command(
                ["git", *args],
                cwd=self.repo_dir,
                check=check,
                input=input,  # type: ignore[arg-type]
                text=text,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr
            if isinstance(stderr, bytes):
                stderr = stderr.decode(errors="replace")
            raise StoreError(f"git {args[0]} failed: {(stderr or '').strip()}")
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
            raise StoreError(f"git {args[0]} failed: {e}")

    # Objects

    def write_blob(self, data: bytes) -> str:
        result = self._git(
            "hash-object", "-w", "--no-filters", "--stdin", input=data, text=False
        )
        return result.stdout.decode().strip()

    def write_tree(self, entries: Iterable[IndexEntry]) -> str:
        index_file = self.git_dir / f"eis-index.{os.getpid()}"
        env = {"GIT_INDEX_FILE": str(index_file)}
        records = "".join(f"{e.mode} {e.oid}\t{e.path}\0" for e in entries)
        try:
            self._git("read-tree", "--empty", env=env)
            if records:
                self._git("update-index", "-z", "--index-info", input=records, env=env)
            result = self._git("write-tree", env=env)
            return result.stdout.strip()
        finally:
            try:
                index_file.unlink()
            except FileNotFoundError:
                pass

    def write_commit(
        self,
        tree: str,
        parents: List[str],
        message: str,
        author: Signature,
    ) -> str:
        date = f"@{author.timestamp} +0000"
        env = {
            "GIT_AUTHOR_NAME": author.name,
            "GIT_AUTHOR_EMAIL": author.email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": author.name,
            "GIT_COMMITTER_EMAIL": author.email,
            "GIT_COMMITTER_DATE": date,
        }
        args = ["commit-tree", tree]
        for parent in parents:
            args.extend(["-p", parent])
        args.extend(["-F", "-"])
        result = self._git(*args, input=message, env=env)
        return result.stdout.strip()

    def read_commit(self, oid: str) -> CommitInfo:
        result = self._git("cat-file", "commit", oid)
        return parse_commit(oid, result.stdout)

    def empty_tree(self) -> str:
        if self._empty_tree is None:
            result = self._git("hash-object", "-t", "tree", "--stdin", input="")
            self._empty_tree = result.stdout.strip()
        return self._empty_tree

    def diff_trees(
        self, old_tree: Optional[str], new_tree: str
    ) -> List[Tuple[str, str]]:
        result = self._git(
            "diff-tree",
            "-r",
            "-z",
            "--no-renames",
            "--name-status",
            old_tree or self.empty_tree(),
            new_tree,
        )
        items = _split_z(result.stdout)
        return [(items[i], items[i + 1]) for i in range(0, len(items) - 1, 2)]

    # Refs

    def read_ref(self, name: str) -> Optional[str]:
        result = self._git(
            "rev-parse", "-q", "--verify", f"{name}^{{commit}}", check=False
        )
        if result.returncode == 0:
            return result.stdout.strip()
        if result.returncode == 1:
            return None
        raise StoreError(f"Failed to read ref {name}: {result.stderr.strip()}")

    def compare_and_swap_ref(
        self, name: str, new_oid: str, expected_oid: Optional[str], reason: str = ""
    ) -> None:
        # An all-zero old value tells update-ref the ref must not exist
        old = expected_oid or "0" * len(new_oid)
        result = self._git(
            "update-ref", "-m", reason or "eis", name, new_oid, old, check=False
        )
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        actual = self.read_ref(name)
        if actual != expected_oid:
            raise RefConflictError(name, expected_oid or "", actual or "")
        if any(marker in stderr for marker in REF_LOCK_MARKERS):
            # Another writer holds the ref lock mid-update
            raise RefConflictError(
                name, expected_oid or "", actual or "", detail="ref is locked"
            )
        raise StoreError(f"git update-ref failed: {stderr}")

    # Real repository state (read-only)

    def read_anchor(self) -> RepositoryAnchor:
        try:
            symbolic = self._git("symbolic-ref", "-q", "HEAD", check=False)
            branch = symbolic.stdout.strip() if symbolic.returncode == 0 else None
            head = self._git(
                "rev-parse", "-q", "--verify", "HEAD^{commit}", check=False
            )
        except StoreError as e:
            raise AnchorReadError(str(e))
        if head.returncode not in (0, 1):
            raise AnchorReadError(f"Failed to read HEAD: {head.stderr.strip()}")
        commit = head.stdout.strip() if head.returncode == 0 else None
        return RepositoryAnchor(
            commit=commit, branch=branch, operation=self._in_progress_operation()
        )

    def _in_progress_operation(self) -> Optional[str]:
        for marker, operation in IN_PROGRESS_MARKERS:
            if (self.git_dir / marker).exists():
                return operation
        return None

    def read_index_entries(self) -> List[IndexEntry]:
        result = self._git("ls-files", "--stage", "-z")
        entries: Dict[str, IndexEntry] = {}
        for record in _split_z(result.stdout):
            meta, _, path = record.partition("\t")
            mode, oid, _stage = meta.split(" ")
            # Conflicted paths appear once per stage; keep the first
            if path not in entries:
                entries[path] = IndexEntry(path=path, mode=mode, oid=oid)
        return list(entries.values())

    def read_work_tree_candidates(self, include_untracked: bool) -> WorkTreeCandidates:
        modified = _split_z(self._git("diff-files", "--name-only", "-z").stdout)
        untracked: List[str] = []
        if include_untracked:
            untracked = _split_z(
                self._git("ls-files", "--others", "--exclude-standard", "-z").stdout
            )
        return WorkTreeCandidates(modified=modified, untracked=untracked)
