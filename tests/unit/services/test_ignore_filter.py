"""Unit tests for IgnoreFilter."""

from pathlib import Path

from eis.services.ignore_filter import IgnoreFilter


class TestIgnoreFilter:
    """Unit tests for path filtering."""

    def setup_method(self):
        self.patterns = ["*.swp", "*~", ".#*"]

    def _make(self, repo_dir: Path, git_dir: Path = None) -> IgnoreFilter:
        return IgnoreFilter(repo_dir, self.patterns, git_dir=git_dir)

    def test_metadata_directories_always_ignored(self, tmp_path):
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored(".git/index")
        assert ignore_filter.is_ignored(".git/refs/heads/main", tracked=True)
        assert ignore_filter.is_ignored(".eis/status.json")
        assert ignore_filter.is_ignored("sub/.git/config")
        assert not ignore_filter.is_ignored("src/git.py")

    def test_root_path_ignored(self, tmp_path):
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("")
        assert ignore_filter.is_ignored(".")

    def test_configured_patterns_apply_to_tracked_paths(self, tmp_path):
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("notes.txt.swp", tracked=True)
        assert ignore_filter.is_ignored("src/app.py~", tracked=True)
        assert ignore_filter.is_ignored("src/.#app.py")
        assert not ignore_filter.is_ignored("src/app.py", tracked=True)

    def test_gitignore_only_applies_to_untracked_paths(self, tmp_path):
        (tmp_path / ".gitignore").write_text("*.log\nbuild/\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("debug.log")
        assert ignore_filter.is_ignored("build/out.bin")
        # Force-added files stay visible, as they do to git
        assert not ignore_filter.is_ignored("debug.log", tracked=True)
        assert not ignore_filter.is_ignored("src/main.c")

    def test_gitignore_comments_and_negation(self, tmp_path):
        (tmp_path / ".gitignore").write_text("# comment\n\n*.log\n!keep.log\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("other.log")
        assert not ignore_filter.is_ignored("keep.log")

    def test_nested_gitignore_is_scoped_to_its_directory(self, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / ".gitignore").write_text("_build/\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("docs/_build/index.html")
        assert not ignore_filter.is_ignored("_build/index.html")

    def test_nested_pattern_without_slash_matches_at_any_depth(self, tmp_path):
        (tmp_path / "sub" / "deep").mkdir(parents=True)
        (tmp_path / "sub" / ".gitignore").write_text("*.log\n!keep.log\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("sub/x.log")
        assert ignore_filter.is_ignored("sub/deep/x.log")
        assert not ignore_filter.is_ignored("sub/deep/keep.log")
        assert not ignore_filter.is_ignored("x.log")

    def test_nested_pattern_with_slash_is_relative_to_its_directory(self, tmp_path):
        (tmp_path / "sub" / "deep").mkdir(parents=True)
        (tmp_path / "sub" / ".gitignore").write_text("/out\ndeep/gen.py\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("sub/out")
        assert ignore_filter.is_ignored("sub/deep/gen.py")
        assert not ignore_filter.is_ignored("sub/deep/out")
        assert not ignore_filter.is_ignored("sub/other/deep/gen.py")

    def test_gitignore_read_at_every_depth(self, tmp_path):
        (tmp_path / "a" / "b").mkdir(parents=True)
        (tmp_path / "a" / "b" / ".gitignore").write_text("build/\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("a/b/build/out.o")
        assert ignore_filter.is_ignored("a/b/c/build/out.o")
        assert not ignore_filter.is_ignored("a/build/out.o")

    def test_gitignore_inside_ignored_directory_is_not_read(self, tmp_path):
        (tmp_path / ".gitignore").write_text("vendor/\n")
        (tmp_path / "vendor").mkdir()
        (tmp_path / "vendor" / ".gitignore").write_text("!*\n")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_ignored("vendor/lib.py")

    def test_info_exclude_is_read(self, tmp_path):
        git_dir = tmp_path / ".git"
        (git_dir / "info").mkdir(parents=True)
        (git_dir / "info" / "exclude").write_text("secrets.env\n")
        ignore_filter = self._make(tmp_path, git_dir=git_dir)

        assert ignore_filter.is_ignored("secrets.env")

    def test_reload_picks_up_new_rules(self, tmp_path):
        ignore_filter = self._make(tmp_path)
        assert not ignore_filter.is_ignored("cache.tmp")

        (tmp_path / ".gitignore").write_text("*.tmp\n")
        ignore_filter.reload_gitignore()

        assert ignore_filter.is_ignored("cache.tmp")

    def test_relative_path(self, tmp_path):
        ignore_filter = self._make(tmp_path)
        repo_dir = tmp_path.resolve()

        assert ignore_filter.relative_path(repo_dir / "src" / "app.py") == "src/app.py"
        assert ignore_filter.relative_path(tmp_path.parent / "elsewhere.txt") is None

    def test_relative_path_keeps_symlink_name(self, tmp_path):
        (tmp_path / "target.txt").write_text("content")
        (tmp_path / "link.txt").symlink_to(tmp_path / "target.txt")
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.relative_path(tmp_path / "link.txt") == "link.txt"

    def test_is_gitignore_file(self, tmp_path):
        ignore_filter = self._make(tmp_path)

        assert ignore_filter.is_gitignore_file(".gitignore")
        assert ignore_filter.is_gitignore_file("docs/.gitignore")
        assert not ignore_filter.is_gitignore_file("gitignore.txt")
