"""
Poll cycle orchestration for the Ennoblement Watcher pipeline.

One cycle runs: fetch → detect → notify → persist

Fetch and persistence failures fail the cycle. Notification failures
are retried a bounded number of times and then given up on, so an
unreliable channel never blocks the cursor from advancing. At most one
cycle runs at a time.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ennoblement_watcher.compare import ChangeDetector
from ennoblement_watcher.models import Cursor, CycleOutcome, CycleSummary, FilterConfig
from ennoblement_watcher.notify import NotificationError, Notifier, NotifierNotReadyError, render_message
from ennoblement_watcher.state import StateStore
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("pipeline")

DEFAULT_NOTIFY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds, multiplied by the attempt number


class PollCycle:
    """
    Runs poll cycles against a scraper, notifier and state store.

    The filter configuration is an input of every cycle rather than a
    constructor argument, so an operator can switch filtering on and off
    between cycles.

    Args:
        scraper: Object with an async scrape() returning events.
        notifier: Notification channel.
        store: Cursor storage.
        detector: Change detection strategy.
        recipients: Recipients passed to the notifier.
        template: Optional message template containing {{items}}.
        max_notify_attempts: Delivery attempts before giving up.
        retry_delay: Base delay between delivery attempts.
        dry_run: Render messages but never deliver them.
    """

    def __init__(
        self,
        scraper: Any,
        notifier: Notifier,
        store: StateStore,
        detector: ChangeDetector,
        recipients: Optional[Sequence[str]] = None,
        template: Optional[str] = None,
        max_notify_attempts: int = DEFAULT_NOTIFY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        dry_run: bool = False
    ):
        self.scraper = scraper
        self.notifier = notifier
        self.store = store
        self.detector = detector
        self.recipients: List[str] = list(recipients or [])
        self.template = template
        self.max_notify_attempts = max(1, max_notify_attempts)
        self.retry_delay = retry_delay
        self.dry_run = dry_run

        self.execution_count = 0
        self.error_count = 0
        self.last_execution_time: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def trigger(self, filters: Optional[FilterConfig]) -> Optional[CycleSummary]:
        """
        Run a cycle unless one is already in flight.

        Returns:
            The cycle summary, or None if the trigger was discarded.
        """
        if self._lock.locked():
            logger.warning("Poll cycle already in progress, discarding trigger")
            return None
        return await self.run_once(filters)

    async def run_once(self, filters: Optional[FilterConfig]) -> CycleSummary:
        """
        Execute one poll cycle, waiting for any cycle in flight to finish.

        Args:
            filters: Filter configuration for this cycle, or None to let
                     every event through.

        Returns:
            Summary of the cycle.

        Raises:
            FetchError, ExtractionError: If the page could not be scraped.
            StateStoreError: If the cursor could not be read or written.
        """
        async with self._lock:
            start = time.monotonic()
            self.execution_count += 1
            logger.info(f"Starting poll cycle #{self.execution_count}")

            try:
                summary = await self._run(filters)
            except Exception as e:
                self.error_count += 1
                logger.error(f"Poll cycle #{self.execution_count} failed: {e}")
                raise
            finally:
                self.last_execution_time = datetime.now(timezone.utc)
                logger.debug(f"Cycle took {time.monotonic() - start:.2f}s")

            logger.info(
                f"Poll cycle #{self.execution_count} complete: {summary.outcome.value} "
                f"({summary.processed_count} processed, {summary.matched_count} matched)"
            )
            return summary

    async def _run(self, filters: Optional[FilterConfig]) -> CycleSummary:
        # Fetching
        events = await self.scraper.scrape()
        logger.info(f"Scraped {len(events)} event(s)")

        # Detecting
        cursor = await self.store.load()
        detection = self.detector.detect(events, cursor, filters)

        summary = CycleSummary(
            outcome=CycleOutcome.NO_OP,
            processed_count=len(events),
            new_count=detection.new_count,
            matched_count=len(detection.matched),
        )

        if not detection.matched:
            if detection.cursor_advanced:
                await self._persist(detection.new_cursor)
                summary.state_changed = True
            if detection.bootstrap and detection.cursor_advanced:
                summary.message = "First run: cursor recorded, no notification sent"
            elif detection.bootstrap:
                summary.message = "No comparable timestamp yet, cursor not recorded"
            else:
                summary.message = "No new events"
            logger.info(summary.message)
            return summary

        # Notifying
        message = render_message(
            detection.matched,
            template=self.template,
            faction_name=filters.faction_name if filters else None
        )
        summary.notified = await self._notify_with_retry(message)

        # Persisting
        if detection.cursor_advanced:
            await self._persist(detection.new_cursor)
            summary.state_changed = True

        if summary.notified:
            summary.outcome = CycleOutcome.NOTIFIED
            summary.message = f"Sent {summary.matched_count} new event(s)"
        else:
            summary.outcome = CycleOutcome.NOT_NOTIFIED
            summary.message = f"{summary.matched_count} new event(s) not delivered"

        return summary

    async def _persist(self, cursor: Optional[Cursor]) -> None:
        if cursor is None:
            return
        await self.store.save(cursor)

    async def _notify_with_retry(self, message: str) -> bool:
        """
        Deliver a message, retrying delivery failures.

        Returns:
            True if delivered, False if skipped or given up on.
        """
        if self.dry_run:
            logger.info(f"[DRY RUN] Notification would have been sent:\n{message}")
            return False

        if not self.recipients:
            logger.warning("No recipients configured, skipping notification")
            return False

        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_notify_attempts + 1):
            if not self.notifier.is_ready():
                logger.warning(f"{self.notifier.name} notifier not ready, skipping notification")
                return False

            try:
                await self.notifier.notify_many(self.recipients, message)
                logger.info("Notification sent successfully")
                return True
            except NotifierNotReadyError as e:
                logger.warning(f"Notifier not ready, skipping notification: {e}")
                return False
            except NotificationError as e:
                last_error = e
                logger.warning(f"Notification attempt {attempt} failed: {e}")
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Notification attempt {attempt} failed unexpectedly: "
                    f"{type(e).__name__}: {e}"
                )

            if attempt < self.max_notify_attempts and self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay * attempt)

        logger.error(f"All {self.max_notify_attempts} notification attempts failed: {last_error}")
        return False

    def get_execution_stats(self) -> Dict[str, Any]:
        """Return execution counters for diagnostics."""
        success_rate = 0.0
        if self.execution_count:
            success_rate = round(
                (self.execution_count - self.error_count) / self.execution_count * 100, 2
            )

        return {
            "execution_count": self.execution_count,
            "error_count": self.error_count,
            "success_rate": success_rate,
            "last_execution_time": (
                self.last_execution_time.isoformat() if self.last_execution_time else None
            ),
        }
