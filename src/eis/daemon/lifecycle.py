"""
Process lifecycle helpers for the eis daemon.

The daemon records its PID in .eis/daemon.pid; liveness is checked with
psutil so a stale PID file left by a crash is recognized as such.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

import psutil

from ..config import EisConfig
from ..errors import EisError
from ..store.git_store import GitObjectStore
from .loop import DaemonLoop

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def read_pid(pid_path: Path) -> Optional[int]:
    """PID stored in pid_path, or None if absent or unreadable."""
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError):
        return None


def write_pid(pid_path: Path, pid: Optional[int] = None) -> None:
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(f"{pid if pid is not None else os.getpid()}\n")


def remove_pid(pid_path: Path, pid: Optional[int] = None) -> None:
    """Remove the PID file if it still belongs to pid (default: this process)."""
    expected = pid if pid is not None else os.getpid()
    if read_pid(pid_path) == expected:
        try:
            pid_path.unlink()
        except FileNotFoundError:
            pass


def _daemon_process(pid: int) -> Optional[psutil.Process]:
    try:
        process = psutil.Process(pid)
        if process.status() == psutil.STATUS_ZOMBIE:
            return None
        cmdline = " ".join(process.cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None
    # A recycled PID belongs to some unrelated program
    if "eis" not in cmdline:
        return None
    return process


def running_daemon_pid(config: EisConfig) -> Optional[int]:
    """PID of the daemon serving config.repo_dir, None if none is running."""
    pid = read_pid(config.pid_path)
    if pid is None:
        return None
    if _daemon_process(pid) is None:
        logger.debug(f"Stale PID file {config.pid_path} (pid {pid})")
        return None
    return pid


def is_daemon_running(config: EisConfig) -> bool:
    return running_daemon_pid(config) is not None


def start_background(config: EisConfig, verbose: bool = False) -> int:
    """Start the daemon as a detached background process.

    Returns:
        PID of the started process
    """
    daemon_cmd = [
        sys.executable,
        "-m",
        "eis.daemon",
        str(config.repo_dir),
    ]
    if verbose:
        daemon_cmd.append("--verbose")

    process = subprocess.Popen(
        daemon_cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        cwd=str(config.repo_dir),
    )
    logger.info(f"Started eis daemon for {config.repo_dir} (pid {process.pid})")
    return process.pid


def wait_until_running(config: EisConfig, pid: int, timeout: float = 5.0) -> bool:
    """Wait for a freshly started daemon to record its PID."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if read_pid(config.pid_path) == pid:
            return True
        if not psutil.pid_exists(pid):
            return False
        time.sleep(0.1)
    return False


def stop_daemon(config: EisConfig, timeout: float = 10.0) -> bool:
    """Terminate the running daemon, killing it if it does not exit in time.

    SIGTERM lets the daemon flush its last snapshot before exiting.

    Returns:
        True if a daemon was running and is now gone
    """
    pid = running_daemon_pid(config)
    if pid is None:
        return False
    process = _daemon_process(pid)
    if process is None:
        return False

    try:
        process.terminate()
        process.wait(timeout=timeout)
    except psutil.TimeoutExpired:
        logger.warning(f"Daemon {pid} did not exit within {timeout}s, killing it")
        process.kill()
        process.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass

    remove_pid(config.pid_path, pid)
    return True


def add_log_file(config: EisConfig, verbose: bool = False) -> logging.Handler:
    """Send daemon logs to .eis/daemon.log in addition to the console."""
    config.eis_dir.mkdir(parents=True, exist_ok=True)
    root_logger = logging.getLogger()
    if verbose:
        root_logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(config.log_path)
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(file_handler)
    logger.info(f"Daemon logging to {config.log_path}")
    return file_handler


def run_foreground(config: EisConfig, verbose: bool = False) -> int:
    """Run the daemon in this process until SIGTERM/SIGINT.

    Returns:
        Exit code (0 = clean shutdown, 1 = error)
    """
    add_log_file(config, verbose)

    existing = running_daemon_pid(config)
    if existing is not None:
        logger.error(
            f"Another eis daemon (pid {existing}) is watching {config.repo_dir}"
        )
        return 1

    try:
        store = GitObjectStore(config.repo_dir)
    except EisError as e:
        logger.error(f"Cannot open repository: {e}")
        return 1

    loop = DaemonLoop(config, store)

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        loop.request_shutdown()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    write_pid(config.pid_path)
    try:
        return loop.run()
    finally:
        remove_pid(config.pid_path)
