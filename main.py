"""Application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core import setup_logger, get_logger
from core.app_initializer import ApplicationInitializer
from core.constants import RunMode
from core.exceptions import (
    BroadcastError,
    ConfigurationError,
    DatabaseError,
    InstanceConflict,
    TransientIO,
    ValidationError,
)

logger = get_logger("app")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_LOCKED = 2
EXIT_STORE = 3


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Referral contest bot")
    parser.add_argument(
        "--broadcast",
        metavar="FILE",
        help="send the message in FILE to every known chat and user, then exit",
    )
    return parser.parse_args(argv)


async def serve(app: ApplicationInitializer) -> None:
    await app.initialize()
    await app.run()


async def broadcast(app: ApplicationInitializer, message: str) -> None:
    await app.initialize()
    report = await app.run_broadcast(message)
    logger.info(f"Broadcast report: {len(report.succeeded)} delivered, {len(report.failed)} failed")
    for failure in report.failed:
        logger.info(f"  {failure.target}: {failure.reason}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the selected mode and map failures to exit codes."""
    args = parse_args(argv)
    mode = RunMode.BROADCAST if args.broadcast else RunMode.NORMAL

    try:
        app = ApplicationInitializer(mode=mode)
    except ConfigurationError as e:
        setup_logger(level=logging.INFO)
        logger.error(f"Invalid configuration: {e.message}")
        return EXIT_CONFIG

    config = app.config
    log_name = "broadcast.log" if mode is RunMode.BROADCAST else "bot.log"
    setup_logger(
        level=logging.DEBUG if config.debug else logging.INFO,
        log_file=str(Path(config.log_folder) / log_name),
        colored=True,
    )

    message = ""
    if mode is RunMode.BROADCAST:
        try:
            # Read verbatim, the operator writes it in the configured parse mode
            message = Path(args.broadcast).read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Cannot read broadcast message: {e}")
            return EXIT_CONFIG

    try:
        if mode is RunMode.BROADCAST:
            asyncio.run(broadcast(app, message))
        else:
            asyncio.run(serve(app))
    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Invalid configuration: {e.message}")
        return EXIT_CONFIG
    except InstanceConflict as e:
        logger.error(e.message)
        return EXIT_LOCKED
    except (DatabaseError, TransientIO, BroadcastError) as e:
        logger.error(f"Fatal error: {e.message}")
        return EXIT_STORE
    except KeyboardInterrupt:
        logger.info("Application stopped by user")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
