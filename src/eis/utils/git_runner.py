"""
Git command runner with dubious ownership handling.

All git access in eis goes through this module so that every invocation gets
the same environment: safe.directory for the repository (the daemon may run
under a different user than the one owning the checkout), no optional locks
(so read-only commands never rewrite the user's index) and optional
per-call overrides such as GIT_INDEX_FILE or author identity.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

GitInput = Union[str, bytes, None]


def get_git_environment(
    project_dir: Path, overrides: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """
    Get environment variables for git commands.

    Args:
        project_dir: Path to the repository work tree
        overrides: Extra variables applied last (e.g. GIT_INDEX_FILE)

    Returns:
        Dictionary of environment variables for git commands
    """
    env = os.environ.copy()

    # Shift any GIT_CONFIG_* entries from the calling environment up by one so
    # that safe.directory can occupy index 0
    config_count = 1
    for key in os.environ:
        if key.startswith("GIT_CONFIG_KEY_"):
            idx = key.replace("GIT_CONFIG_KEY_", "")
            if idx.isdigit():
                new_idx = int(idx) + 1
                env[f"GIT_CONFIG_KEY_{new_idx}"] = os.environ[key]
                if f"GIT_CONFIG_VALUE_{idx}" in os.environ:
                    env[f"GIT_CONFIG_VALUE_{new_idx}"] = os.environ[
                        f"GIT_CONFIG_VALUE_{idx}"
                    ]
                config_count = max(config_count, new_idx + 1)

    env["GIT_CONFIG_KEY_0"] = "safe.directory"
    env["GIT_CONFIG_VALUE_0"] = str(project_dir.resolve())
    env["GIT_CONFIG_COUNT"] = str(config_count)

    # Never let status-like commands refresh and rewrite .git/index
    env["GIT_OPTIONAL_LOCKS"] = "0"
    # Never prompt on a terminal from a background process
    env["GIT_TERMINAL_PROMPT"] = "0"

    if overrides:
        env.update(overrides)

    return env


def run_git_command(
    cmd: List[str],
    cwd: Path,
    check: bool = True,
    input: GitInput = None,
    text: bool = True,
    timeout: Optional[float] = 30.0,
    env: Optional[Dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    """
    Run a git command with the eis environment.

    Args:
        cmd: Git command as a list (e.g., ["git", "status"])
        cwd: Working directory for the command
        check: Whether to raise CalledProcessError on non-zero exit
        input: Data written to the command's stdin
        text: Whether to decode input/output as text
        timeout: Timeout in seconds
        env: Environment overrides for this call

    Returns:
        CompletedProcess instance with the command result

    Raises:
        ValueError: If cmd does not start with 'git'
        subprocess.CalledProcessError: If check=True and command fails
        subprocess.TimeoutExpired: If timeout is exceeded
        FileNotFoundError: If git is not installed
    """
    if not cmd or cmd[0] != "git":
        raise ValueError("Command must start with 'git'")

    logger.debug(f"git: {' '.join(cmd[1:])}")
    return subprocess.run(
        cmd,
        cwd=cwd,
        check=check,
        input=input,
        capture_output=True,
        text=text,
        timeout=timeout,
        env=get_git_environment(cwd, env),
    )


def is_git_repository(project_dir: Path) -> bool:
    """Check if a directory is inside a git work tree."""
    try:
        result = run_git_command(
            ["git", "rev-parse", "--is-inside-work-tree"],
            cwd=project_dir,
            check=True,
        )
        return result.stdout.strip() == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, OSError):
        return False


def find_work_tree_root(start_dir: Path) -> Optional[Path]:
    """
    Get the top-level directory of the work tree containing start_dir.

    Returns:
        Absolute work tree root, or None if start_dir is not in a git repo
    """
    try:
        result = run_git_command(
            ["git", "rev-parse", "--show-toplevel"],
            cwd=start_dir,
            check=True,
        )
        return Path(result.stdout.strip()).resolve()
    except (subprocess.CalledProcessError, FileNotFoundError, OSError):
        return None


def get_git_dir(project_dir: Path) -> Path:
    """
    Get the absolute git directory for a work tree.

    Handles linked worktrees, where .git is a file pointing elsewhere.

    Raises:
        subprocess.CalledProcessError: If project_dir is not a repository
    """
    result = run_git_command(
        ["git", "rev-parse", "--absolute-git-dir"],
        cwd=project_dir,
        check=True,
    )
    return Path(result.stdout.strip())
