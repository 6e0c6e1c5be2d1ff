"""Command-line interface for the position watcher."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys

from .config import AppConfig, load_config
from .errors import ConfigurationError
from .logging_setup import configure_logging
from .services import Monitor

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="position-watch",
        description="Watch trading positions on web pages and alert on changes",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in the working directory)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run all detection and state logic but do not send alerts",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Run a single polling cycle")
    sub.add_parser("status", help="Show stored position snapshots")

    monitor_parser = sub.add_parser("monitor", help="Continuous monitoring loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=float,
        default=None,
        help="Poll interval in seconds (overrides config)",
    )

    reset_parser = sub.add_parser("reset", help="Forget stored snapshots")
    reset_parser.add_argument(
        "urls",
        nargs="*",
        help="Target urls to reset (default: all)",
    )

    return parser


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if not args.dry_run:
        return config
    notifications = dataclasses.replace(config.notifications, dry_run=True)
    return dataclasses.replace(config, notifications=notifications)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, stop_event)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers not supported on this platform")


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    logger.info("Received %s, shutting down", sig.name)
    stop_event.set()


async def _run(args: argparse.Namespace, config: AppConfig) -> int:
    """Execute the selected command."""
    monitor = Monitor(config)

    if args.command in ("check", "monitor"):
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        if args.command == "check":
            await monitor.run_once(stop_event)
        else:
            await monitor.run_continuous(args.interval, stop_event=stop_event)
    elif args.command == "status":
        print(monitor.status_report())
    elif args.command == "reset":
        removed = monitor.reset(args.urls or None)
        monitor.state.store.flush()
        print(f"Reset {len(removed)} snapshot(s)")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)
    try:
        config = _apply_overrides(load_config(args.config), args)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    sys.exit(asyncio.run(_run(args, config)))
