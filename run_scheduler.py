#!/usr/bin/env python3
"""
FeedBar Scheduler Runner
========================

Long-running entry point for the ingestion worker (Docker/systemd).
Handles initialization, startup, and graceful shutdown.
"""

import sys
import signal
import asyncio
import argparse

from feedbar.config.settings import get_settings
from feedbar.database.connection import DatabaseConnection
from feedbar.database.schema import DatabaseSchema
from feedbar.scheduler.interval_scheduler import IngestionScheduler
from feedbar.utils.logging import configure_application_logging, get_logger_for_component


async def main():
    """Main entry point for the scheduler service."""
    parser = argparse.ArgumentParser(description='FeedBar Ingestion Scheduler')
    parser.add_argument('--once', action='store_true',
                        help='Run a single ingestion batch and exit')
    parser.add_argument('--no-icons', action='store_true',
                        help='Do not run the icon backfill job')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    settings = get_settings()
    configure_application_logging(
        log_level="DEBUG" if args.debug else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )
    logger = get_logger_for_component("scheduler_runner")

    logger.info("Starting FeedBar scheduler...")

    DatabaseSchema(settings.database.path).create_tables()
    db = DatabaseConnection(settings.database.path, pool_size=settings.database.pool_size)
    scheduler = IngestionScheduler(settings, db)

    try:
        if args.once:
            result = await scheduler.run_ingestion()
            logger.info(f"Single batch finished: {result.summary()}")
            return 0 if not result.store_errors else 1

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)

        await scheduler.run_forever(run_icons=not args.no_icons)
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        scheduler.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
