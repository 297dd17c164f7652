"""
stallguard CLI.

Usage:
    stallguard                         # Same as `stallguard run`
    stallguard run                     # Start the worker and supervise it
    stallguard config                  # Show effective config (webhook redacted)
    stallguard probe                   # Count completion markers in the log now
    stallguard notify-test             # Send a test message to the webhook
    stallguard --env-file PATH ...     # Read settings from another .env file
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from stallguard import __version__
from stallguard.activity import LogActivityProbe, LogRotator
from stallguard.alerts import WebhookNotifier, get_hostname
from stallguard.config import ConfigurationError, Settings, load_settings
from stallguard.supervisor import build_supervisor

logger = logging.getLogger(__name__)


def _setup_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format=settings.log_format)


def _load(args: argparse.Namespace) -> Optional[Settings]:
    """Load settings, reporting problems on stderr."""
    try:
        return load_settings(args.env_file)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


# --- Commands ---


def cmd_run(args: argparse.Namespace) -> int:
    """Supervise the worker until SIGINT/SIGTERM."""
    settings = _load(args)
    if settings is None:
        return 1
    _setup_logging(settings)

    logger.info(f"stallguard {__version__} starting")
    logger.info(f"Worker log: {settings.log_path}")
    logger.info(
        f"Check interval {settings.check_interval:g}s, "
        f"restart wait {settings.restart_wait_time:g}s"
    )

    LogRotator().ensure_directory(settings.log_path)
    supervisor = build_supervisor(settings)
    return asyncio.run(supervisor.run())


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    settings = _load(args)
    if settings is None:
        return 1
    print(yaml.safe_dump(settings.redacted_dump(), default_flow_style=False, sort_keys=False))
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    """Print how many completion markers the log holds right now."""
    settings = _load(args)
    if settings is None:
        return 1
    count = LogActivityProbe(settings.completion_marker).count(settings.log_path)
    print(f"{settings.log_path}: {count} x '{settings.completion_marker}'")
    return 0


def cmd_notify_test(args: argparse.Namespace) -> int:
    """Deliver one test message to the webhook."""
    settings = _load(args)
    if settings is None:
        return 1
    _setup_logging(settings)

    notifier = WebhookNotifier(settings.discord_webhook_url, timeout=settings.notify_timeout)
    message = f"hostname: {get_hostname()} - stallguard test message"
    if asyncio.run(notifier.deliver(message)):
        print("Test message delivered")
        return 0
    print("Test message was not delivered (see log output)", file=sys.stderr)
    return 1


COMMANDS = {
    "run": cmd_run,
    "config": cmd_config,
    "probe": cmd_probe,
    "notify-test": cmd_notify_test,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stallguard",
        description="Restart a worker whose log stops showing progress",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--env-file", type=Path, default=None,
        help="Read settings from this .env file instead of ./.env",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start and supervise the worker (default)")
    subparsers.add_parser("config", help="Show effective configuration")
    subparsers.add_parser("probe", help="Count completion markers in the log")
    subparsers.add_parser("notify-test", help="Send a test alert to the webhook")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = COMMANDS[args.command or "run"]
    sys.exit(command(args))


if __name__ == "__main__":
    main()
