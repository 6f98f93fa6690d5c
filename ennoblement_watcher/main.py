#!/usr/bin/env python3
"""
Main orchestration module for the Ennoblement Watcher pipeline.

This module wires the scraper, change detector, notifier and state
store together and either runs a single poll cycle or keeps polling on
the configured schedule.
"""

import asyncio
import sys
from typing import Optional

from ennoblement_watcher.compare import create_detector
from ennoblement_watcher.config import ConfigError, FilterSwitch, Settings, load_settings
from ennoblement_watcher.fetch import EnnoblementScraper
from ennoblement_watcher.notify import EmailNotifier, LogNotifier, Notifier, WebhookNotifier
from ennoblement_watcher.pipeline import PollCycle
from ennoblement_watcher.schedule import CronSchedule, Scheduler
from ennoblement_watcher.state import FileStateStore
from ennoblement_watcher.utils import get_logger, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


def build_notifier(settings: Settings) -> Notifier:
    """
    Create the notification channel selected by NOTIFIER.

    Args:
        settings: Validated settings.

    Returns:
        Notifier instance.
    """
    if settings.notifier == "webhook":
        return WebhookNotifier()

    if settings.notifier == "email":
        return EmailNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.email_from,
        )

    return LogNotifier()


def build_cycle(settings: Settings, scraper: Optional[EnnoblementScraper] = None) -> PollCycle:
    """
    Compose a poll cycle from settings.

    Args:
        settings: Validated settings.
        scraper: Scraper to use instead of one built from settings.

    Returns:
        Configured PollCycle.
    """
    return PollCycle(
        scraper=scraper or EnnoblementScraper(settings.target_url, settings.row_selector),
        notifier=build_notifier(settings),
        store=FileStateStore(settings.state_file),
        detector=create_detector(settings.cursor_strategy),
        recipients=settings.recipients,
        template=settings.message_template,
        dry_run=settings.dry_run,
    )


async def run(settings: Settings) -> int:
    """
    Run the watcher until done.

    Args:
        settings: Validated settings.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = get_logger("main")

    scraper = EnnoblementScraper(settings.target_url, settings.row_selector)
    cycle = build_cycle(settings, scraper)
    switch = FilterSwitch(settings.filter_config(), enabled=settings.filters_enabled)

    logger.info("=" * 60)
    logger.info("Ennoblement Watcher - Starting")
    logger.info(f"Target: {settings.target_url}")
    logger.info(
        f"Strategy: {settings.cursor_strategy}, notifier: {settings.notifier}, "
        f"filters: {'on' if switch.is_enabled else 'off'}"
    )
    logger.info("=" * 60)

    try:
        if settings.run_once:
            summary = await cycle.run_once(switch.current())
            logger.info(f"Summary: {summary.message}")
            return EXIT_SUCCESS

        scheduler = Scheduler(cycle, CronSchedule.parse(settings.cron_expression), switch.current)
        await scheduler.run_forever()
        return EXIT_SUCCESS

    except Exception as e:
        logger.error(f"Poll cycle failed: {e}")
        return EXIT_FAILURE

    finally:
        scraper.close()
        stats = cycle.get_execution_stats()
        logger.info(
            f"Executions: {stats['execution_count']}, errors: {stats['error_count']}, "
            f"success rate: {stats['success_rate']}%"
        )


def main() -> int:
    """
    Main entry point for the Ennoblement Watcher.

    Sets up logging and runs the watcher with proper error handling.

    Returns:
        Exit code for the process.
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging("INFO")
        get_logger("main").error(str(e))
        return EXIT_ENV_ERROR

    setup_logging(settings.log_level)
    logger = get_logger("main")

    if settings.dry_run:
        logger.info("Running in DRY RUN mode - notifications will be skipped")

    try:
        return asyncio.run(run(settings))

    except KeyboardInterrupt:
        logger.warning("Watcher interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in watcher: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
