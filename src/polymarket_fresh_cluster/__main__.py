"""Command-line entry point.

Usage:
    python -m polymarket_fresh_cluster
    python -m polymarket_fresh_cluster --threshold 5 --sink broadcast
    python -m polymarket_fresh_cluster --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from pydantic import ValidationError

from polymarket_fresh_cluster.config import Settings, get_settings
from polymarket_fresh_cluster.pipeline import Pipeline, PipelineStartupError

logger = logging.getLogger("polymarket_fresh_cluster")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)

    # Reduce noise from HTTP libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polymarket_fresh_cluster",
        description="Alert when fresh wallets cluster on a Polymarket outcome.",
    )
    parser.add_argument("--threshold", type=int, help="Fresh wallets per outcome to alert")
    parser.add_argument("--window-hours", type=float, help="Rolling window in hours")
    parser.add_argument(
        "--sink",
        choices=("console", "broadcast"),
        help="Where alerts are published",
    )
    parser.add_argument("--port", type=int, help="Broadcast server port")
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        help="Logging level",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of environment settings.

    Raises:
        ValidationError: If an override is out of range.
    """
    if args.threshold is not None:
        settings.cluster.threshold = args.threshold
    if args.window_hours is not None:
        settings.cluster.window_hours = args.window_hours
    if args.sink is not None:
        settings.alert.sink = args.sink
    if args.port is not None:
        settings.alert.port = args.port
    if args.log_level is not None:
        settings.log_level = args.log_level
    return settings


async def _run(settings: Settings) -> None:
    pipeline = Pipeline(settings)
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with pipeline:
        waiter = asyncio.create_task(stop.wait())
        scan = asyncio.create_task(pipeline.wait_stopped())
        await asyncio.wait({waiter, scan}, return_when=asyncio.FIRST_COMPLETED)
        for task in (waiter, scan):
            task.cancel()
        logger.info("Shutting down...")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = apply_overrides(get_settings(), args)
    except ValidationError as e:
        setup_logging(logging.INFO)
        logger.error("Invalid configuration: %s", e)
        return 2

    setup_logging(settings.get_logging_level())
    logger.info("Settings: %s", settings.redacted_summary())

    try:
        asyncio.run(_run(settings))
    except PipelineStartupError as e:
        logger.error("Startup failed: %s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
