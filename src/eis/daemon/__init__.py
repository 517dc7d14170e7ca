"""eis daemon: the long-running snapshot process and its lifecycle helpers."""

from .loop import DaemonLoop

__all__ = ["DaemonLoop"]
