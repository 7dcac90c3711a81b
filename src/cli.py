#!/usr/bin/env python3
"""
CLI for running snapwatch monitors.

Usage:
    python -m src.cli run --roots /path/to/folder1 /path/to/folder2
    python -m src.cli status --state-dir ./snapwatch-state
    python -m src.cli clean --state-dir ./snapwatch-state
"""

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load .env from project root
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    load_dotenv()

from src.snapwatch import (
    ChangeQueue,
    ChangeTraversal,
    CheckpointAndChangeQueue,
    MonitorConfig,
    MonitorManager,
    SnapshotStore,
    SnapwatchError,
)


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cli")

CONSUMER_CHECKPOINT_FILE = "consumer.checkpoint"


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def load_consumer_checkpoint(state_dir: Path) -> Optional[str]:
    """Return the last checkpoint printed by a previous run, if any."""
    path = state_dir / CONSUMER_CHECKPOINT_FILE
    if not path.exists():
        return None
    checkpoint = path.read_text(encoding="utf-8").strip()
    return checkpoint or None


def save_consumer_checkpoint(state_dir: Path, checkpoint: str) -> None:
    state_dir.mkdir(parents=True, exist_ok=True)
    path = state_dir / CONSUMER_CHECKPOINT_FILE
    temp_path = state_dir / (CONSUMER_CHECKPOINT_FILE + ".tmp")
    temp_path.write_text(checkpoint, encoding="utf-8")
    os.replace(temp_path, path)


def build_config(args) -> MonitorConfig:
    return MonitorConfig.from_env(
        state_dir=Path(args.state_dir).resolve() if args.state_dir else None,
        ace_security_level=getattr(args, "security_level", None),
        idle_interval_seconds=getattr(args, "idle_interval", None),
        wake_on_change=True if getattr(args, "wake_on_change", False) else None,
        include_patterns=getattr(args, "include", None),
        exclude_patterns=getattr(args, "exclude", None),
    )


def cmd_run(args):
    """Run monitors and print changes as JSON lines."""
    config = build_config(args)

    roots = [Path(r).resolve() for r in args.roots]
    for root in roots:
        if not root.exists():
            logger.error(f"Root path does not exist: {root}")
            sys.exit(1)
        if not root.is_dir():
            logger.error(f"Root path is not a directory: {root}")
            sys.exit(1)

    shutdown = GracefulShutdown()
    checkpoint = load_consumer_checkpoint(config.state_dir)

    with MonitorManager([str(r) for r in roots], config=config) as manager:
        traversal = ChangeTraversal(manager)
        if checkpoint is None:
            logger.info("No consumer checkpoint found, starting full traversal")
            batch = traversal.start_traversal(wait=1.0)
        else:
            logger.info(f"Resuming from consumer checkpoint {checkpoint}")
            batch = traversal.resume_traversal(checkpoint, wait=1.0)

        logger.info(f"Monitoring {len(roots)} root(s)")
        for root in roots:
            logger.info(f"  - {root}")
        logger.info(f"State directory: {config.state_dir}")
        logger.info("Press Ctrl+C to stop")

        while not shutdown.should_exit:
            for item in batch:
                print(json.dumps(item.to_dict()), flush=True)
            if batch:
                checkpoint = batch[-1].checkpoint
                save_consumer_checkpoint(config.state_dir, checkpoint)
                logger.debug(f"Committed {len(batch)} change(s) up to {checkpoint}")
            batch = traversal.resume_traversal(checkpoint, wait=1.0)

    logger.info("Monitors stopped")


def cmd_status(args):
    """Show snapshot and queue state."""
    config = build_config(args)
    snapshot_root = config.snapshot_root

    print("\n=== Snapwatch Status ===")
    print(f"State directory: {config.state_dir}")
    print(f"Consumer checkpoint: {load_consumer_checkpoint(config.state_dir) or '(none)'}")

    directories = sorted(p for p in snapshot_root.iterdir() if p.is_dir()) if snapshot_root.exists() else []
    print(f"\nMonitors ({len(directories)}):")
    for directory in directories:
        numbers = SnapshotStore.list_numbers_in(directory)
        print(f"  {directory.name}: snapshots {numbers or '(none)'}")

    if config.db_path.exists():
        with CheckpointAndChangeQueue(ChangeQueue(), config.db_path) as checkpoint_queue:
            print(f"\nPending changes: {checkpoint_queue.pending_count()}")
            for name, point in sorted(checkpoint_queue.get_monitor_restart_points().items()):
                print(f"  {name}: restart at {point.to_dict()}")
    else:
        print("\nPending changes: 0")
    print()


def cmd_clean(args):
    """Delete all snapshot and queue state."""
    config = build_config(args)
    with MonitorManager([], config=config) as manager:
        manager.clean()
    checkpoint_file = config.state_dir / CONSUMER_CHECKPOINT_FILE
    if checkpoint_file.exists():
        checkpoint_file.unlink()
    logger.info(f"Cleaned state in {config.state_dir}")
    print("State cleaned. The next run starts a full traversal.")


def main():
    parser = argparse.ArgumentParser(
        description="CLI for snapwatch file tree monitors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Monitor two folders and print changes
  python -m src.cli run --roots ./documents ./shared --state-dir ./state

  # Only monitor PDF files, skipping temporary folders
  python -m src.cli run --roots ./documents --include "*.pdf" --exclude "contains:/tmp/"

  # Show snapshot and queue state
  python -m src.cli status --state-dir ./state

  # Forget everything and start over
  python -m src.cli clean --state-dir ./state
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Run command
    run_parser = subparsers.add_parser("run", help="Run monitors and print changes")
    run_parser.add_argument("--roots", nargs="+", required=True, help="Root directories to monitor")
    run_parser.add_argument("--state-dir", default=None, help="Directory for snapshots and the queue")
    run_parser.add_argument("--security-level", default=None,
                            help="ACE security level: FILEANDSHARE, SHARE, FILE or FILEORSHARE")
    run_parser.add_argument("--idle-interval", type=float, default=None, help="Seconds between idle passes")
    run_parser.add_argument("--wake-on-change", action="store_true",
                            help="Start the next pass early on filesystem notifications")
    run_parser.add_argument("--include", nargs="*", default=None, help="Include patterns")
    run_parser.add_argument("--exclude", nargs="*", default=None, help="Exclude patterns")
    run_parser.set_defaults(func=cmd_run)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show snapshot and queue state")
    status_parser.add_argument("--state-dir", default=None, help="Directory for snapshots and the queue")
    status_parser.set_defaults(func=cmd_status)

    # Clean command
    clean_parser = subparsers.add_parser("clean", help="Delete all snapshot and queue state")
    clean_parser.add_argument("--state-dir", default=None, help="Directory for snapshots and the queue")
    clean_parser.set_defaults(func=cmd_clean)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        args.func(args)
    except SnapwatchError as e:
        logger.error(f"{e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
