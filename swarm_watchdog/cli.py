#!/usr/bin/env python3
"""Command-line entry point for the swarm watchdog.

Usage:
    # Supervise the default node (/root/rl-swarm, session "gensyn")
    swarm-watchdog

    # Explicit config file plus overrides
    swarm-watchdog --config /etc/swarm-watchdog/node1.yaml --health-interval 120

    # Single tick, for cron
    swarm-watchdog --config node1.yaml --once

    # Show what would be launched, then exit
    swarm-watchdog --dry-run
"""

from __future__ import annotations

import argparse
import fcntl
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import IO, Sequence

from swarm_watchdog import __version__
from swarm_watchdog.config import load_config
from swarm_watchdog.errors import ConfigurationError, LockError
from swarm_watchdog.logging_config import FORMAT_STYLES, configure_third_party_loggers, setup_logging
from swarm_watchdog.models import RestartParam
from swarm_watchdog.orchestrator import build_launch_command
from swarm_watchdog.supervisor import SupervisorLoop

logger = logging.getLogger("swarm_watchdog.cli")

EXIT_CONFIG_ERROR = 2


def acquire_singleton_lock(lock_path: str | Path) -> IO[str]:
    """Take the per-node lock so two supervisors never manage one worker.

    The returned handle must stay open for the life of the process.
    Raises LockError if another supervisor holds it.
    """
    path = Path(lock_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = open(path, "a+")
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        fh.close()
        raise LockError(f"Lock {path} is held by another supervisor", context={"path": str(path)}) from e
    fh.seek(0)
    fh.truncate()
    fh.write(str(os.getpid()))
    fh.flush()
    return fh


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swarm-watchdog",
        description="Keep a swarm worker node running and re-enter it on new game rounds",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--node-name", help="Node name (also the terminal session name)")
    parser.add_argument("--node-dir", help="Worker checkout directory")
    parser.add_argument("--status-url", help="Game status endpoint (empty disables game checks)")
    parser.add_argument("--health-interval", type=float, help="Seconds between ticks")
    parser.add_argument("--grace-period", type=float, help="Seconds to wait after a restart")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        default="default",
        choices=FORMAT_STYLES,
        help="Log line format (default: default)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit (for cron)")
    parser.add_argument("--dry-run", action="store_true", help="Print the worker launch command and exit")
    parser.add_argument("--show-config", action="store_true", help="Print the effective config and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("swarm_watchdog", level=args.log_level, format_style=args.log_format)
    configure_third_party_loggers()

    overrides = {
        "node_name": args.node_name,
        "node_dir": args.node_dir,
        "status_url": args.status_url,
        "health_interval": args.health_interval,
        "grace_period": args.grace_period,
    }
    try:
        config = load_config(args.config, overrides=overrides)
        if args.show_config:
            print(json.dumps(config.to_dict(), indent=2, sort_keys=True))
            return 0
        config.validate(check_paths=not args.dry_run)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG_ERROR

    if args.dry_run:
        command = build_launch_command(config, config.answer_for(RestartParam.ENABLE.value))
        print(shlex.join(command))
        return 0

    try:
        setup_logging(
            "swarm_watchdog",
            level=args.log_level,
            log_file=config.watchdog_log,
            format_style=args.log_format,
        )
    except OSError as e:
        logger.warning(f"Cannot open watchdog log {config.watchdog_log}, logging to console only: {e}")

    try:
        lock_handle = acquire_singleton_lock(config.lock_path)
    except LockError as e:
        logger.info(f"Watchdog already running for {config.node_name}; exiting ({e})")
        return 0
    except OSError as e:
        logger.error(f"Cannot create lock file {config.lock_path}: {e}")
        return EXIT_CONFIG_ERROR

    try:
        return SupervisorLoop(config).run(once=args.once)
    finally:
        lock_handle.close()


if __name__ == "__main__":
    sys.exit(main())
