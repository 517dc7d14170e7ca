"""Entry point for the eis daemon.

Usage:
    python -m eis.daemon <repo_dir>
    python -m eis.daemon /path/to/work/tree --verbose

Runs in the foreground until SIGTERM or SIGINT, then flushes pending changes
into a last snapshot and exits.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import ConfigManager
from ..errors import EisError
from .lifecycle import LOG_FORMAT, run_foreground

# Setup logging - Output to console; run_foreground adds the file handler
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),  # Console output
    ],
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point for the daemon process."""
    parser = argparse.ArgumentParser(
        description="eis daemon - continuous snapshots of a git work tree"
    )
    parser.add_argument("repo_dir", type=Path, help="Root of the git work tree")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    config_manager = ConfigManager(args.repo_dir)
    if not config_manager.is_initialized:
        print(
            f"ERROR: {config_manager.repo_dir} is not initialized, run 'eis init'",
            file=sys.stderr,
        )
        sys.exit(1)

    try:
        config = config_manager.load()
    except EisError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(run_foreground(config, verbose=args.verbose))


if __name__ == "__main__":
    main()
