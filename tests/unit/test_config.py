"""Unit tests for configuration loading and saving."""

import json

import pytest

from eis.config import ConfigManager, DebounceConfig, EisConfig, TrackerConfig
from eis.errors import ConfigError


class TestEisConfig:
    def test_defaults(self, tmp_path):
        config = EisConfig(repo_dir=tmp_path)

        assert config.debounce.idle_seconds == 2.0
        assert config.debounce.max_window_seconds == 30.0
        assert config.tracker.poll_interval_seconds == 1.0
        assert config.tracker.settle_polls == 2
        assert config.snapshot.chain_ref == "EIS_HEAD"
        assert config.snapshot.author_email == "eis@localhost"
        assert config.snapshot.skip_empty is True
        assert config.snapshot.include_untracked is True
        assert config.snapshot.max_ref_retries == 3
        assert "*.swp" in config.ignore_patterns
        assert config.event_queue_size == 10000

    def test_paths(self, tmp_path):
        config = EisConfig(repo_dir=str(tmp_path))

        assert config.eis_dir == tmp_path / ".eis"
        assert config.pid_path == tmp_path / ".eis" / "daemon.pid"
        assert config.status_path == tmp_path / ".eis" / "status.json"
        assert config.log_path == tmp_path / ".eis" / "daemon.log"

    def test_invalid_timings_rejected(self):
        with pytest.raises(ValueError):
            DebounceConfig(idle_seconds=0)
        with pytest.raises(ValueError):
            TrackerConfig(settle_polls=0)


class TestConfigManager:
    """Unit tests for .eis/config.json handling."""

    def test_load_defaults_when_missing(self, tmp_path):
        manager = ConfigManager(tmp_path)

        config = manager.load()

        assert config.repo_dir == tmp_path.resolve()
        assert not manager.is_initialized

    def test_save_and_load(self, tmp_path):
        manager = ConfigManager(tmp_path)
        config = EisConfig(repo_dir=tmp_path)
        config.debounce.idle_seconds = 0.5
        config.snapshot.chain_ref = "refs/eis/head"

        manager.save(config)
        loaded = ConfigManager(tmp_path).load()

        assert manager.is_initialized
        assert loaded.debounce.idle_seconds == 0.5
        assert loaded.snapshot.chain_ref == "refs/eis/head"

    def test_repo_dir_not_persisted(self, tmp_path):
        manager = ConfigManager(tmp_path)
        manager.save(EisConfig(repo_dir=tmp_path))

        with open(manager.config_path) as f:
            data = json.load(f)

        assert "repo_dir" not in data

    def test_moved_work_tree_uses_new_location(self, tmp_path):
        old_dir = tmp_path / "old"
        old_dir.mkdir()
        ConfigManager(old_dir).save(EisConfig(repo_dir=old_dir))
        new_dir = tmp_path / "new"
        old_dir.rename(new_dir)

        config = ConfigManager(new_dir).load()

        assert config.repo_dir == new_dir.resolve()

    def test_partial_config_fills_defaults(self, tmp_path):
        (tmp_path / ".eis").mkdir()
        (tmp_path / ".eis" / "config.json").write_text(
            json.dumps({"debounce": {"idle_seconds": 5}})
        )

        config = ConfigManager(tmp_path).load()

        assert config.debounce.idle_seconds == 5.0
        assert config.debounce.max_window_seconds == 30.0

    def test_invalid_json_raises_config_error(self, tmp_path):
        (tmp_path / ".eis").mkdir()
        (tmp_path / ".eis" / "config.json").write_text("{broken")

        with pytest.raises(ConfigError):
            ConfigManager(tmp_path).load()

    def test_invalid_values_raise_config_error(self, tmp_path):
        (tmp_path / ".eis").mkdir()
        (tmp_path / ".eis" / "config.json").write_text(
            json.dumps({"tracker": {"settle_polls": 0}})
        )

        with pytest.raises(ConfigError):
            ConfigManager(tmp_path).load()

    def test_save_without_config_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigManager(tmp_path).save()

    def test_get_config_caches(self, tmp_path):
        manager = ConfigManager(tmp_path)

        assert manager.get_config() is manager.get_config()

    def test_find_repo_root_walks_up(self, tmp_path):
        (tmp_path / ".eis").mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert ConfigManager.find_repo_root(nested) == tmp_path.resolve()

    def test_find_repo_root_none(self, tmp_path):
        assert ConfigManager.find_repo_root(tmp_path) is None
