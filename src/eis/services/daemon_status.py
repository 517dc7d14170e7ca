"""
Daemon status persisted to .eis/status.json.

This is the daemon's upward observability contract: whether it is healthy,
whether the watch failed, whether ref updates keep failing, plus counters.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class Health(str, Enum):
    STARTING = "starting"
    HEALTHY = "healthy"
    WATCH_FAILED = "watch_failed"
    REF_UPDATE_FAILING = "ref_update_failing"
    STORE_FAILED = "store_failed"
    STOPPED = "stopped"


@dataclass
class DaemonStatus:
    """Snapshot of daemon state written after each cycle."""

    pid: int = 0
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    health: str = Health.STOPPED.value
    last_error: Optional[str] = None

    # Repository state
    anchor_commit: Optional[str] = None
    anchor_branch: Optional[str] = None
    chain_state: Optional[str] = None
    chain_tip: Optional[str] = None
    last_snapshot_at: Optional[str] = None

    # Statistics
    snapshots_written: int = 0
    snapshots_skipped: int = 0
    snapshots_dropped: int = 0
    anchor_changes: int = 0
    consecutive_ref_failures: int = 0
    events_received: int = 0

    @classmethod
    def load_from_disk(cls, status_path: Path) -> Optional["DaemonStatus"]:
        """Load status, or None when there is no readable status file."""
        if not status_path.exists():
            return None
        try:
            with open(status_path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Unreadable status file {status_path}: {e}")
            return None
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def save_to_disk(self, status_path: Path) -> None:
        """Write the status atomically (write then rename)."""
        self.updated_at = datetime.now(timezone.utc).isoformat()
        status_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = status_path.with_suffix(f".{os.getpid()}.tmp")
        with open(tmp_path, "w") as f:
            json.dump(asdict(self), f, indent=2)
        os.replace(tmp_path, status_path)

    def mark_started(self, pid: int) -> None:
        self.pid = pid
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.health = Health.STARTING.value
        self.last_error = None

    def set_health(self, health: Health, error: Optional[str] = None) -> None:
        """Record a health transition. Becoming healthy clears the last error."""
        self.health = health.value
        if health is Health.HEALTHY:
            self.last_error = None
        elif error is not None:
            self.last_error = error

    def record_snapshot(self, commit: str) -> None:
        self.chain_tip = commit
        self.last_snapshot_at = datetime.now(timezone.utc).isoformat()
