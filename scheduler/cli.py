"""
Scheduler - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the engagement oracle.

- Provides argparse-based CLI
- Loads configuration from .env, environment and CLI flags
- Runs the hourly loop, a single cycle, or a single asset
- Entry point for the application

============================================================
USAGE
============================================================
python -m scheduler.cli
python -m scheduler.cli --single-cycle --dry-run
python -m scheduler.cli --asset 0xabc... --log-format text
python -m scheduler.cli --metrics 0xabc...

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError

from .config import SchedulerConfig
from .core import setup_logging
from .runtime import build_runtime


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="engagement-oracle",
        description="Commits composite engagement metrics for tracked assets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                 # Hourly loop over tracked assets
  %(prog)s --single-cycle --dry-run        # One cycle against in-memory stores
  %(prog)s --asset 0xabc                   # Update one asset now and exit
  %(prog)s --metrics 0xabc                 # Print metrics without committing
        """
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--tick-interval",
        type=int,
        metavar="SECONDS",
        help="Seconds between cycles (default: TICK_INTERVAL_SECONDS or 3600)",
    )

    execution_group.add_argument(
        "--single-cycle",
        action="store_true",
        help="Run a single cycle and exit (no loop)",
    )

    execution_group.add_argument(
        "--asset",
        type=str,
        metavar="ASSET_ID",
        help="Update a single asset and exit",
    )

    execution_group.add_argument(
        "--metrics",
        type=str,
        metavar="ASSET_ID",
        help="Compute metrics for an asset without committing, print JSON and exit",
    )

    execution_group.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Use in-memory blob store and ledger",
    )

    execution_group.add_argument(
        "--max-concurrent",
        type=int,
        metavar="N",
        help="Per-asset runs in flight at once (default: MAX_CONCURRENT_RUNS or 10)",
    )

    execution_group.add_argument(
        "--assets-file",
        type=str,
        metavar="PATH",
        help="YAML file of tracked assets (default: TRACKED_ASSETS_FILE)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: LOG_FORMAT or json)",
    )

    # --------------------------------------------------------
    # System Options
    # --------------------------------------------------------
    system_group = parser.add_argument_group("System Options")

    system_group.add_argument(
        "--shutdown-timeout",
        type=int,
        metavar="SECONDS",
        help="Wait for in-flight runs on shutdown (default: SHUTDOWN_TIMEOUT_SECONDS or 30)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate CLI arguments, return list of errors."""
    errors = []

    if args.tick_interval is not None and args.tick_interval < 1:
        errors.append("--tick-interval must be at least 1 second")

    if args.max_concurrent is not None and args.max_concurrent < 1:
        errors.append("--max-concurrent must be at least 1")

    if args.shutdown_timeout is not None and args.shutdown_timeout < 1:
        errors.append("--shutdown-timeout must be at least 1 second")

    modes = [bool(args.single_cycle), bool(args.asset), bool(args.metrics)]
    if sum(modes) > 1:
        errors.append("--single-cycle, --asset and --metrics are mutually exclusive")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> SchedulerConfig:
    """Environment configuration with CLI flags taking precedence."""
    config = SchedulerConfig.from_env()

    if args.tick_interval is not None:
        config.tick_interval_seconds = args.tick_interval
    if args.max_concurrent is not None:
        config.max_concurrent_runs = args.max_concurrent
    if args.shutdown_timeout is not None:
        config.shutdown_timeout_seconds = args.shutdown_timeout
    if args.assets_file is not None:
        config.tracked_assets_file = args.assets_file
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format
    if args.dry_run:
        config.dry_run = True

    return config


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    config = build_config(args)

    try:
        runtime = build_runtime(config)
    except ConfigurationError as e:
        logger.error(e.message)
        return 1

    scheduler = runtime.scheduler
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        correlation_id=scheduler.correlation_id,
    )

    try:
        if args.metrics:
            snapshot = await scheduler.compute_metrics(args.metrics)
            print(json.dumps(snapshot.to_dict(), indent=2))
            return 0 if snapshot.error is None else 1

        if args.asset:
            result = await scheduler.run_asset(args.asset)
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.success else 1

        if args.single_cycle:
            logger.info("Running single cycle...")
            summary = await scheduler.start_cycle()
            print(f"\nCycle {summary.cycle_id}: {summary.committed} committed, {summary.failed} failed")
            print(f"Duration: {summary.duration_seconds:.2f}s")
            for result in summary.results:
                if not result.success:
                    print(f"  {result.asset_id}: {result.error}")
            return 0 if summary.success else 1

        await scheduler.start()
        scheduler.install_signal_handlers()
        logger.info("Starting main loop (press Ctrl+C to stop)...")
        await scheduler.run_forever()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await runtime.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    print_banner(args)

    return asyncio.run(async_main(args))


def print_banner(args: argparse.Namespace) -> None:
    """Print startup banner."""
    if args.metrics:
        mode = f"metrics {args.metrics}"
    elif args.asset:
        mode = f"asset {args.asset}"
    elif args.single_cycle:
        mode = "single cycle"
    else:
        mode = "loop"

    print()
    print("=" * 60)
    print("  ENGAGEMENT ORACLE")
    print("=" * 60)
    print(f"  Mode:       {mode}")
    print(f"  Dry Run:    {bool(args.dry_run)}")
    print(f"  Log Level:  {args.log_level or 'env'}")
    print(f"  Interval:   {args.tick_interval or 'env'}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
