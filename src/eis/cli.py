"""Command line interface for eis."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import EIS_DIR_NAME, ConfigManager, EisConfig
from .daemon import lifecycle
from .errors import EisError, NotInitializedError
from .services.chain_history import walk_chain
from .services.daemon_status import DaemonStatus, Health
from .services.snapshot_builder import SnapshotBuilder
from .store.git_store import GitObjectStore
from .utils.git_runner import find_work_tree_root, get_git_dir

console = Console()

STATUS_STYLES = {
    "A": "green",
    "M": "yellow",
    "D": "red",
    "T": "magenta",
}


def _short_branch(branch: Optional[str]) -> str:
    if not branch:
        return "detached"
    return branch[len("refs/heads/") :] if branch.startswith("refs/heads/") else branch


def _load_config(ctx) -> EisConfig:
    """Find the initialized work tree above the start directory.

    Raises:
        NotInitializedError: If no .eis/ directory exists up the tree
    """
    repo_root = ConfigManager.find_repo_root(ctx.obj["start_dir"])
    if repo_root is None:
        raise NotInitializedError(
            "Not an eis work tree (no .eis/ found). "
            "Run 'eis init' at the repository root."
        )
    return ConfigManager(repo_root).load()


def _fail(message: str) -> NoReturn:
    console.print(f"❌ {message}", style="red", markup=False)
    sys.exit(1)


def _exclude_eis_dir(repo_root: Path) -> bool:
    """Add .eis/ to .git/info/exclude. Returns True if the file was changed."""
    exclude_path = get_git_dir(repo_root) / "info" / "exclude"
    entry = f"{EIS_DIR_NAME}/"
    existing = exclude_path.read_text() if exclude_path.exists() else ""
    if entry in existing.splitlines():
        return False

    exclude_path.parent.mkdir(parents=True, exist_ok=True)
    with open(exclude_path, "a") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(f"{entry}\n")
    return True


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    help="Start directory for work tree discovery (walks up to find .eis/)",
)
@click.version_option(version=__version__, prog_name="eis")
@click.pass_context
def cli(ctx, verbose: bool, path: Optional[str]):
    """Continuous, invisible snapshots of a git work tree.

    \b
    eis watches your work tree and, whenever edits settle, records a
    snapshot commit under refs of its own (EIS_HEAD by default). Your
    branch, index and HEAD are never touched.

    \b
    GETTING STARTED:
      1. eis init      # Once, at the root of the work tree
      2. eis watch     # Start the background daemon
      3. eis log       # Browse the snapshot chain

    \b
    CONFIGURATION:
      Config file: .eis/config.json
      Daemon log:  .eis/daemon.log
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["start_dir"] = Path(path).resolve() if path else Path.cwd()

    # Configure logging at WARNING level for clean CLI output
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing config")
@click.pass_context
def init(ctx, force: bool):
    """Initialize eis at the root of the current git work tree.

    Creates .eis/config.json with default settings and excludes .eis/ from
    git through .git/info/exclude (your .gitignore is left alone).
    """
    start_dir = ctx.obj["start_dir"].resolve()
    repo_root = find_work_tree_root(start_dir)
    if repo_root is None:
        _fail(f"{start_dir} is not inside a git work tree")
    if repo_root.resolve() != start_dir:
        _fail(f"Run 'eis init' at the work tree root: {repo_root}")

    config_manager = ConfigManager(start_dir)
    if config_manager.config_path.exists() and not force:
        console.print(
            f"⚠️  Already initialized: {config_manager.config_path}", style="yellow"
        )
        return

    config = EisConfig(repo_dir=start_dir)
    config_manager.save(config)
    if _exclude_eis_dir(start_dir):
        console.print(f"📝 Added {EIS_DIR_NAME}/ to .git/info/exclude", style="dim")

    console.print(f"✅ Initialized eis in {start_dir}", style="green")
    console.print("   Start watching with: eis watch")


@cli.command()
@click.pass_context
def watch(ctx):
    """Start the eis daemon in the background."""
    try:
        config = _load_config(ctx)
    except EisError as e:
        _fail(str(e))

    pid = lifecycle.running_daemon_pid(config)
    if pid is not None:
        console.print(f"⚠️  eis daemon already running (pid {pid})", style="yellow")
        return

    pid = lifecycle.start_background(config, verbose=ctx.obj["verbose"])
    if not lifecycle.wait_until_running(config, pid):
        _fail(f"eis daemon failed to start, see {config.log_path}")

    console.print(f"✅ eis daemon started (pid {pid})", style="green")
    console.print(f"   Log: {config.log_path}", style="dim")


@cli.command()
@click.pass_context
def daemon(ctx):
    """Run the eis daemon in the foreground (Ctrl+C to stop)."""
    try:
        config = _load_config(ctx)
    except EisError as e:
        _fail(str(e))

    logging.basicConfig(
        level=logging.DEBUG if ctx.obj["verbose"] else logging.INFO,
        format=lifecycle.LOG_FORMAT,
        force=True,
    )
    sys.exit(lifecycle.run_foreground(config, verbose=ctx.obj["verbose"]))


@cli.command()
@click.pass_context
def stop(ctx):
    """Stop the eis daemon gracefully.

    The daemon records a last snapshot of pending changes before it exits.
    """
    try:
        config = _load_config(ctx)
    except EisError as e:
        _fail(str(e))

    if lifecycle.stop_daemon(config):
        console.print("✅ eis daemon stopped", style="green")
    else:
        console.print("⚠️  eis daemon not running", style="yellow")


@cli.command()
@click.pass_context
def status(ctx):
    """Show daemon health, the current anchor and snapshot counters."""
    try:
        config = _load_config(ctx)
    except EisError as e:
        _fail(str(e))

    pid = lifecycle.running_daemon_pid(config)
    daemon_status = DaemonStatus.load_from_disk(config.status_path)

    table = Table(title="eis Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Details", style="green")

    table.add_row("Work tree", "✅ Initialized", str(config.repo_dir))
    if pid is not None:
        table.add_row("Daemon", "✅ Running", f"pid {pid}")
    else:
        table.add_row("Daemon", "❌ Not running", "Start with: eis watch")

    if daemon_status is None:
        table.add_row("Health", "-", "No status recorded yet")
        console.print(table)
        return

    health = daemon_status.health
    if pid is None and health in (Health.STARTING.value, Health.HEALTHY.value):
        # Killed without a chance to record it
        health = Health.STOPPED.value
    health_icon = "✅" if health == Health.HEALTHY.value else "⚠️"
    table.add_row("Health", f"{health_icon} {health}", daemon_status.last_error or "")

    anchor = daemon_status.anchor_commit
    table.add_row(
        "Anchor",
        _short_branch(daemon_status.anchor_branch),
        anchor[:10] if anchor else "unborn",
    )
    tip = daemon_status.chain_tip
    table.add_row(
        config.snapshot.chain_ref,
        daemon_status.chain_state or "-",
        tip[:10] if tip else "no snapshots yet",
    )
    table.add_row("Last snapshot", "", daemon_status.last_snapshot_at or "never")
    table.add_row(
        "Snapshots",
        f"{daemon_status.snapshots_written} written",
        f"{daemon_status.snapshots_skipped} skipped, "
        f"{daemon_status.snapshots_dropped} dropped",
    )
    table.add_row(
        "Anchor changes",
        str(daemon_status.anchor_changes),
        f"{daemon_status.events_received} file events",
    )
    console.print(table)


@cli.command()
@click.option(
    "--max-count", "-n", default=10, show_default=True, help="Snapshots to show"
)
@click.option(
    "--stat/--no-stat", default=True, help="List changed files for each snapshot"
)
@click.pass_context
def log(ctx, max_count: int, stat: bool):
    """Walk the snapshot chain, newest first.

    Changes are shown against each snapshot's chain predecessor, so a
    re-anchored snapshot lists what changed since the last snapshot under
    the previous anchor.
    """
    try:
        config = _load_config(ctx)
        store = GitObjectStore(config.repo_dir)
        builder = SnapshotBuilder(store, config.snapshot)
        records = walk_chain(
            store,
            builder,
            config.snapshot.chain_ref,
            limit=max_count,
            with_changes=stat,
        )
    except EisError as e:
        _fail(str(e))

    if not records:
        console.print(f"No snapshots on {config.snapshot.chain_ref} yet", style="dim")
        return

    for record in records:
        when = datetime.fromtimestamp(record.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        anchor = record.anchor[:10] if record.anchor else "unborn"
        header = (
            f"[yellow]{record.commit[:10]}[/yellow]  {when}  "
            f"on [cyan]{escape(_short_branch(record.branch))}[/cyan]@{anchor}"
        )
        if record.reanchored:
            header += "  [magenta](re-anchored)[/magenta]"
        console.print(header)
        for change_status, path in record.changes:
            style = STATUS_STYLES.get(change_status, "white")
            console.print(f"    {change_status}  {path}", style=style, markup=False)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n❌ Interrupted by user", style="red")
        sys.exit(1)
    except Exception as e:
        console.print(f"❌ Unexpected error: {str(e)}", style="red", markup=False)
        sys.exit(1)


if __name__ == "__main__":
    main()
