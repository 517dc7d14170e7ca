"""
Shared pytest fixtures for eis tests.

Provides throw-away git repositories, an in-memory object store and
configuration helpers.
"""

import subprocess
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from eis.config import EisConfig
from eis.store.base import RepositoryAnchor
from eis.store.memory import InMemoryObjectStore


def _run_git(repo_dir: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo_dir,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git() -> Callable[..., str]:
    """Run a git command in a repository and return its stripped stdout."""
    return _run_git


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A git repository with one commit on main holding two files."""
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()

    subprocess.run(
        ["git", "init", "-b", "main"], cwd=repo_dir, check=True, capture_output=True
    )
    _run_git(repo_dir, "config", "user.email", "test@example.com")
    _run_git(repo_dir, "config", "user.name", "Test User")
    _run_git(repo_dir, "config", "commit.gpgsign", "false")

    (repo_dir / "README.md").write_text("# Test project\n")
    (repo_dir / "src").mkdir()
    (repo_dir / "src" / "app.py").write_text("print('hello')\n")
    _run_git(repo_dir, "add", ".")
    _run_git(repo_dir, "commit", "-m", "Initial commit")
    return repo_dir.resolve()


@pytest.fixture
def memory_store() -> InMemoryObjectStore:
    """In-memory store whose HEAD is an unborn main branch."""
    return InMemoryObjectStore(
        anchor=RepositoryAnchor(commit=None, branch="refs/heads/main")
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., EisConfig]:
    """Build an EisConfig for a work tree, defaulting to a fresh tmp directory."""

    def _make(repo_dir: Optional[Path] = None, **overrides: Any) -> EisConfig:
        work_tree = repo_dir or tmp_path / "work"
        work_tree.mkdir(parents=True, exist_ok=True)
        return EisConfig(repo_dir=work_tree.resolve(), **overrides)

    return _make
