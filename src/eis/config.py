"""Configuration management for eis."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

EIS_DIR_NAME = ".eis"


class DebounceConfig(BaseModel):
    """Configuration for coalescing bursts of file events."""

    idle_seconds: float = Field(
        default=2.0,
        description="Quiet period with no new events before a snapshot is taken",
    )
    max_window_seconds: float = Field(
        default=30.0,
        description="Longest a burst may accumulate before a snapshot is forced",
    )

    @field_validator("idle_seconds", "max_window_seconds")
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


class TrackerConfig(BaseModel):
    """Configuration for polling the real HEAD."""

    poll_interval_seconds: float = Field(
        default=1.0, description="How often HEAD is read"
    )
    settle_polls: int = Field(
        default=2,
        description=(
            "Consecutive identical reads required before an anchor change "
            "is reported"
        ),
    )

    @field_validator("settle_polls")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


class SnapshotConfig(BaseModel):
    """Configuration for snapshot commits and the chain ref."""

    chain_ref: str = Field(default="EIS_HEAD", description="Ref holding the chain tip")
    author_name: str = Field(default="eis", description="Author of snapshot commits")
    author_email: str = Field(
        default="eis@localhost", description="Author email of snapshot commits"
    )
    message_prefix: str = Field(
        default="eis snapshot", description="First words of every snapshot message"
    )
    skip_empty: bool = Field(
        default=True,
        description="Do not write a snapshot when nothing changed since the last one",
    )
    include_untracked: bool = Field(
        default=True,
        description="Snapshot untracked files that are not ignored by .gitignore",
    )
    max_ref_retries: int = Field(
        default=3,
        description=(
            "Attempts at the compare-and-swap ref update before dropping "
            "a snapshot"
        ),
    )


class EisConfig(BaseModel):
    """Root configuration stored in .eis/config.json."""

    repo_dir: Path = Field(default=Path("."), description="Work tree root")
    debounce: DebounceConfig = Field(default_factory=DebounceConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    ignore_patterns: List[str] = Field(
        default=[
            "*.swp",
            "*.swo",
            "*.swx",
            "*~",
            ".#*",
            "#*#",
            "4913",
            ".DS_Store",
        ],
        description="Extra gitwildmatch patterns never snapshotted",
    )
    event_queue_size: int = Field(
        default=10000, description="Capacity of the daemon's event channel"
    )

    @field_validator("repo_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @property
    def eis_dir(self) -> Path:
        return self.repo_dir / EIS_DIR_NAME

    @property
    def pid_path(self) -> Path:
        return self.eis_dir / "daemon.pid"

    @property
    def status_path(self) -> Path:
        return self.eis_dir / "status.json"

    @property
    def log_path(self) -> Path:
        return self.eis_dir / "daemon.log"


class ConfigManager:
    """Manages configuration loading and saving for one repository."""

    CONFIG_FILE_NAME = "config.json"

    def __init__(self, repo_dir: Path):
        self.repo_dir = Path(repo_dir).resolve()
        self.config_path = self.repo_dir / EIS_DIR_NAME / self.CONFIG_FILE_NAME
        self._config: Optional[EisConfig] = None

    @property
    def is_initialized(self) -> bool:
        return self.config_path.parent.is_dir()

    def load(self) -> EisConfig:
        """Load configuration from file, or defaults when there is none.

        Raises:
            ConfigError: If the file exists but cannot be parsed or validated
        """
        data = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Failed to load config from {self.config_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(
                    f"Invalid config in {self.config_path}: not a JSON object"
                )

        # The work tree is wherever the config lives, not what the file says
        data["repo_dir"] = str(self.repo_dir)
        try:
            self._config = EisConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config in {self.config_path}: {e}")
        return self._config

    def save(self, config: Optional[EisConfig] = None) -> None:
        """Save configuration to file."""
        if config is None:
            config = self._config

        if config is None:
            raise ConfigError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json", exclude={"repo_dir"})
        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

    def get_config(self) -> EisConfig:
        """Get current configuration, loading it if needed."""
        if self._config is None:
            return self.load()
        return self._config

    @staticmethod
    def find_repo_root(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Walk up from start_dir to the first directory holding .eis/."""
        current = (start_dir or Path.cwd()).resolve()
        for candidate in [current, *current.parents]:
            if (candidate / EIS_DIR_NAME).is_dir():
                return candidate
        return None
