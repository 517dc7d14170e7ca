"""
eis - continuous, non-destructive editing history for git repositories.

A background daemon watches the work tree and records each settled burst of
edits as a snapshot commit under a private ref (EIS_HEAD), parented on the
commit you currently have checked out. Your branch, index and HEAD are never
touched.
"""

__version__ = "0.3.0"
