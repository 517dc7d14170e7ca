"""Snapshot engine services."""

from .chain_manager import ChainManager, ChainState, SnapshotOutcome, SnapshotStatus
from .change_notifier import ChangeNotifier
from .debouncer import Debouncer
from .ignore_filter import IgnoreFilter
from .repo_state_tracker import RepositoryStateTracker
from .shadow_index import ShadowIndex, TrackedFile
from .snapshot_builder import SnapshotBuilder

__all__ = [
    "ChainManager",
    "ChainState",
    "ChangeNotifier",
    "Debouncer",
    "IgnoreFilter",
    "RepositoryStateTracker",
    "ShadowIndex",
    "SnapshotBuilder",
    "SnapshotOutcome",
    "SnapshotStatus",
    "TrackedFile",
]
