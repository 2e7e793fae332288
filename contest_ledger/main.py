#!/usr/bin/env python3
"""
Contest Ledger Service - Main entry point

This service holds per-account token balances, registers contest entries
against them and refunds debits whose entries could not be saved.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys

import structlog

from contest_ledger.config import Config
from contest_ledger.service import ContestLedgerService


logger = logging.getLogger(__name__)


def configure_logging(config: Config) -> None:
    """Route stdlib logging and structlog through the configured level and format."""
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Request lines from the catalog client are too chatty below WARNING
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level)
        ),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Contest Ledger Service")
    parser.add_argument(
        "--no-recovery",
        action="store_true",
        help="Do not run the compensation recovery loop in this process",
    )
    return parser


def run_service():
    """Run the service until a shutdown signal arrives (hupper worker entry)."""
    asyncio.run(main())


def start_with_reloader():
    """Watch the source tree with hupper and restart the worker on change."""
    import hupper

    # Only the monitor process gets a reloader back; the worker gets None
    if hupper.start_reloader("contest_ledger.main.run_service"):
        logger.info("Watching contest_ledger for changes")


async def main():
    """Run ContestLedgerService until SIGINT or SIGTERM, then stop it cleanly."""
    config = Config.from_env()
    configure_logging(config)

    service = ContestLedgerService(config)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    runner = asyncio.create_task(service.start())
    waiter = asyncio.create_task(shutdown.wait())

    try:
        done, _ = await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if runner in done:
            # start() only returns early on failure
            runner.result()
        else:
            logger.info("Shutdown signal received")
    except Exception as e:
        logger.error(f"Service failed with error: {e}")
        await service.stop()
        sys.exit(1)
    finally:
        waiter.cancel()

    runner.cancel()
    try:
        await runner
    except asyncio.CancelledError:
        pass
    await service.stop()


def cli():
    args = build_parser().parse_args()

    # Environment carries the flag across the hupper worker boundary
    if args.no_recovery:
        os.environ["RECOVERY_ENABLED"] = "false"

    if Config.from_env().is_development():
        start_with_reloader()
    else:
        run_service()


if __name__ == "__main__":
    cli()
