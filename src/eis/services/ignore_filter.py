"""Path filtering for the change notifier and the shadow index."""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

import pathspec

logger = logging.getLogger(__name__)

# Never snapshotted, whatever the configuration says
ALWAYS_IGNORED_DIRS = {".git", ".eis"}


class IgnoreFilter:
    """Decides which work tree paths eis should look at.

    Metadata directories and configured patterns are always excluded.
    .gitignore rules only apply to paths git does not already track, the
    same way git itself treats them.
    """

    def __init__(
        self,
        repo_dir: Path,
        patterns: Optional[Iterable[str]] = None,
        git_dir: Optional[Path] = None,
    ):
        self.repo_dir = Path(repo_dir).resolve()
        self.git_dir = git_dir
        self._configured_spec = pathspec.PathSpec.from_lines(
            "gitwildmatch", list(patterns or [])
        )
        self._gitignore_spec = pathspec.PathSpec.from_lines("gitwildmatch", [])
        self.reload_gitignore()

    def reload_gitignore(self) -> None:
        """Re-read .gitignore files at every depth and .git/info/exclude."""
        patterns: List[str] = []
        if self.git_dir is not None:
            self._read_patterns(self.git_dir / "info" / "exclude", None, patterns)
        self._read_patterns(self.repo_dir / ".gitignore", None, patterns)

        # Parents are visited first, so their rules decide which directories
        # are skipped; git never reads .gitignore inside an ignored directory
        spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)
        for dirpath, dirnames, _ in os.walk(self.repo_dir, onerror=self._walk_error):
            rel_root = Path(dirpath).relative_to(self.repo_dir).as_posix()
            kept = []
            for d in sorted(dirnames):
                rel = d if rel_root == "." else f"{rel_root}/{d}"
                if d in ALWAYS_IGNORED_DIRS or spec.match_file(rel + "/"):
                    continue
                kept.append(d)
            dirnames[:] = kept
            if rel_root == ".":
                continue
            before = len(patterns)
            self._read_patterns(Path(dirpath) / ".gitignore", rel_root, patterns)
            if len(patterns) != before:
                spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

        self._gitignore_spec = spec
        logger.debug(f"Loaded {len(patterns)} ignore patterns")

    @staticmethod
    def _walk_error(error: OSError) -> None:
        logger.warning(f"Failed to scan for nested .gitignore files: {error}")

    @staticmethod
    def _read_patterns(path: Path, prefix: Optional[str], patterns: List[str]) -> None:
        """Append the patterns of one ignore file, rebased onto the work tree root.

        A pattern from a nested .gitignore with no slash except a trailing one
        matches at any depth below that directory; any other pattern is
        relative to the directory.
        """
        if not path.is_file():
            return
        try:
            with open(path, "r", encoding="utf-8", errors="ignore") as f:
                for line in f:
                    line = line.rstrip("\n").strip()
                    if not line or line.startswith("#"):
                        continue
                    if prefix:
                        negated = line.startswith("!")
                        body = line[1:] if negated else line
                        if "/" in body.rstrip("/"):
                            body = f"{prefix}/{body.lstrip('/')}"
                        else:
                            body = f"{prefix}/**/{body}"
                        line = f"!{body}" if negated else body
                    patterns.append(line)
        except OSError:
            pass

    def relative_path(self, path: Path) -> Optional[str]:
        """Convert an absolute path to a work tree relative posix path.

        Returns None for paths outside the work tree.
        """
        path = Path(path)
        try:
            return path.relative_to(self.repo_dir).as_posix()
        except ValueError:
            pass
        # Resolve only the parent so a symlink is not replaced by its target
        try:
            resolved = path.parent.resolve() / path.name
            return resolved.relative_to(self.repo_dir).as_posix()
        except (ValueError, OSError):
            return None

    def is_metadata(self, rel_path: str) -> bool:
        return any(part in ALWAYS_IGNORED_DIRS for part in rel_path.split("/"))

    def is_ignored(self, rel_path: str, tracked: bool = False) -> bool:
        """Check a work tree relative path.

        Args:
            rel_path: Posix path relative to the work tree root
            tracked: Whether git already tracks the path
        """
        if not rel_path or rel_path == ".":
            return True
        if self.is_metadata(rel_path):
            return True
        if self._configured_spec.match_file(rel_path):
            return True
        if not tracked and self._gitignore_spec.match_file(rel_path):
            return True
        return False

    def is_gitignore_file(self, rel_path: str) -> bool:
        return rel_path.rsplit("/", 1)[-1] == ".gitignore"
