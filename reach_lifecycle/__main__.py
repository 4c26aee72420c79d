"""Entry point for running the Reach lifecycle manager and CLI commands."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Any

logger = logging.getLogger(__name__)


def _configure_logging_from_settings(verbose: bool = False) -> None:
    from reach_lifecycle.config import get_settings
    from reach_lifecycle.core.logging import configure_logging

    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level.upper(),
        json_format=settings.log_format == "json",
    )


def run_manager(args: argparse.Namespace) -> int:
    """Start the lifecycle manager and block until interrupted.

    Returns:
        Exit code (0 for a clean shutdown, 1 if startup failed).
    """
    from reach_lifecycle.services.lifecycle_manager import (
        get_lifecycle_manager,
        shutdown_lifecycle_manager,
        start_lifecycle_manager,
    )

    _configure_logging_from_settings(getattr(args, "verbose", False))

    start_lifecycle_manager()
    if get_lifecycle_manager() is None:
        return 1  # start_lifecycle_manager logged the cause

    stop = threading.Event()

    def _handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        while not stop.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        shutdown_lifecycle_manager()
    return 0


def run_tick(args: argparse.Namespace) -> int:
    """Run a single fast or slow tick synchronously and print a summary.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    from reach_lifecycle.config import get_settings
    from reach_lifecycle.core.errors import ReachLifecycleError
    from reach_lifecycle.core.lifecycle_constants import FAST_TICK_NAME, SLOW_TICK_NAME
    from reach_lifecycle.core.tracing import tick_context
    from reach_lifecycle.factory import ServiceFactory

    _configure_logging_from_settings(args.verbose)

    try:
        services = ServiceFactory(get_settings()).create_all()
    except ReachLifecycleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.cadence == "fast":
            with tick_context(FAST_TICK_NAME):
                result = services.manager.run_fast_tick()
            if result.promotion is not None:
                print(f"Promoted: {result.promotion.promoted_count}")
                if result.promotion.failed_ids:
                    print(f"Failed promotions: {', '.join(result.promotion.failed_ids)}")
            if result.janitor is not None:
                j = result.janitor
                print(
                    f"Temp entries: scanned={j.scanned} deleted={j.deleted} "
                    f"vanished={j.vanished} failed={j.failed}"
                )
            if result.timings:
                print(f"Took {result.timings['total_ms']:.1f}ms")
            return 0

        with tick_context(SLOW_TICK_NAME):
            ok = services.manager.run_slow_tick()
        print("Version cleanup: " + ("ok" if ok else "failed"))
        return 0 if ok else 1
    finally:
        if services.database is not None:
            services.database.close()


def run_version() -> None:
    """Print version information."""
    from reach_lifecycle import __version__

    print(f"reach-lifecycle {__version__}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point with subcommand support."""
    parser = argparse.ArgumentParser(
        prog="reach-lifecycle",
        description="Background lifecycle manager for Reach instances",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="store_true",
        help="Show version and exit",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands",
    )

    # Run command (default)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the lifecycle manager (default if no command given)",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    # Tick command
    tick_parser = subparsers.add_parser(
        "tick",
        help="Run one tick now and exit",
        description=(
            "Runs a single tick synchronously. 'fast' promotes overdue waiting "
            "instances and sweeps the temp directory; 'slow' prunes old versions."
        ),
    )
    tick_parser.add_argument(
        "cadence",
        choices=["fast", "slow"],
        help="Which tick to run",
    )
    tick_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    if args.version:
        run_version()
        sys.exit(0)

    if args.command == "tick":
        sys.exit(run_tick(args))
    elif args.command == "run" or args.command is None:
        sys.exit(run_manager(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
