"""
Compare module for the Ennoblement Watcher pipeline.

This module decides what is new since the previous poll cycle. Two
interchangeable change detection strategies are provided:

- Timestamp cursor: events strictly newer than the last processed
  timestamp are new; the first run only records a starting point.
- Content hash cursor: the filtered event set is hashed and compared with
  the previously stored hash; any change re-announces the whole set.

Both only report an advanced cursor when the comparison key moved, so
the orchestrator writes state if and only if something changed.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ennoblement_watcher.filter import filter_events
from ennoblement_watcher.models import (
    CURSOR_HASH,
    CURSOR_TIMESTAMP,
    Cursor,
    EnnoblementEvent,
    FilterConfig,
)
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("compare")

# "2025-08-02 - 18:08:12", read as local time
DASHED_TIMESTAMP_PATTERN = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2}) - (\d{1,2}):(\d{2}):(\d{2})$"
)


def parse_instant(timestamp: Optional[str]) -> Optional[datetime]:
    """
    Convert a canonical timestamp string into a comparable UTC datetime.

    Accepts ISO-8601 (with "Z", an explicit offset, or naive local time)
    and the "YYYY-MM-DD - HH:MM:SS" local-time form.

    Args:
        timestamp: Timestamp string.

    Returns:
        Timezone-aware datetime in UTC, or None if unparseable.
    """
    if not timestamp:
        return None

    text = timestamp.strip()

    match = DASHED_TIMESTAMP_PATTERN.match(text)
    if match:
        try:
            local = datetime(*(int(g) for g in match.groups()))
        except ValueError:
            return None
        return local.astimezone(timezone.utc)

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None

    return moment.astimezone(timezone.utc)


def newest_event(events: Sequence[EnnoblementEvent]) -> EnnoblementEvent:
    """
    Return the most recent event.

    Compares parsed instants; when no timestamp is parseable the first
    event is returned, following the page's most-recent-first order.
    """
    dated = [(parse_instant(e.timestamp), e) for e in events]
    dated = [(moment, e) for moment, e in dated if moment is not None]

    if not dated:
        return events[0]

    # max() keeps the first of equal instants, i.e. the page's top row
    return max(dated, key=lambda pair: pair[0])[1]


def build_signature(events: Sequence[EnnoblementEvent]) -> str:
    """
    Build the canonical signature of an event set.

    Each event contributes "timestamp|x|y|oldTribe|newTribe" (absent tribes
    as empty strings); lines are sorted so the signature does not depend
    on page order.

    Args:
        events: Filtered events.

    Returns:
        Newline-joined signature lines.
    """
    lines = []
    for event in events:
        old_tribe = event.old_tribe.strip() if event.old_tribe else ""
        new_tribe = event.new_tribe.strip() if event.new_tribe else ""
        lines.append(f"{event.timestamp}|{event.x}|{event.y}|{old_tribe}|{new_tribe}")

    return "\n".join(sorted(lines))


def hash_signature(signature: str) -> str:
    """Return the lowercase hex SHA-256 digest of a signature."""
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()


@dataclass
class Detection:
    """
    Result of applying a change detector to one cycle's events.

    Attributes:
        matched: New events that passed the filters, to be notified.
        new_cursor: Cursor to persist, or None when the key did not advance.
        new_count: Number of events considered new (matching or not).
        bootstrap: True when the cycle only established a starting point.
    """
    matched: List[EnnoblementEvent] = field(default_factory=list)
    new_cursor: Optional[Cursor] = None
    new_count: int = 0
    bootstrap: bool = False

    @property
    def cursor_advanced(self) -> bool:
        return self.new_cursor is not None


class ChangeDetector:
    """Base class for change detection strategies."""

    kind = ""

    def detect(
        self,
        events: Sequence[EnnoblementEvent],
        cursor: Optional[Cursor],
        filters: Optional[FilterConfig]
    ) -> Detection:
        raise NotImplementedError

    def _usable_cursor(self, cursor: Optional[Cursor]) -> Optional[Cursor]:
        if cursor is None:
            return None
        if cursor.kind != self.kind:
            logger.warning(
                f"Stored cursor is a {cursor.kind} cursor but the active strategy "
                f"is {self.kind}; treating it as absent"
            )
            return None
        return cursor


class TimestampCursorDetector(ChangeDetector):
    """
    Detects events newer than the last processed timestamp.

    An absent cursor means the processing horizon is unknown: the newest
    event's timestamp is recorded and nothing is announced, so history is
    never replayed after a fresh deployment or a cleared store.
    """

    kind = CURSOR_TIMESTAMP

    def detect(
        self,
        events: Sequence[EnnoblementEvent],
        cursor: Optional[Cursor],
        filters: Optional[FilterConfig]
    ) -> Detection:
        if not events:
            logger.info("No events to compare")
            return Detection()

        cursor = self._usable_cursor(cursor)
        last_processed = parse_instant(cursor.value) if cursor else None

        if cursor is not None and last_processed is None:
            logger.warning(f"Unparseable stored timestamp {cursor.value!r}, re-bootstrapping")

        if last_processed is None:
            # Only a comparable timestamp may become the horizon
            dated = [e for e in events if parse_instant(e.timestamp) is not None]
            if not dated:
                logger.warning("No event carries a comparable timestamp, nothing recorded")
                return Detection(bootstrap=True)

            latest = newest_event(dated)
            logger.info(
                f"No processing horizon: recording {latest.timestamp} "
                f"({latest.village_name}) without notifying"
            )
            return Detection(
                new_cursor=Cursor.from_timestamp(latest.timestamp),
                bootstrap=True
            )

        new_events = []
        for event in events:
            moment = parse_instant(event.timestamp)
            if moment is None:
                logger.warning(
                    f"Cannot compare timestamp {event.timestamp!r} of "
                    f"{event.village_name}, skipping"
                )
                continue
            if moment > last_processed:
                new_events.append(event)

        logger.info(
            f"Found {len(new_events)} new event(s) out of {len(events)} "
            f"since {cursor.value}"
        )

        if not new_events:
            return Detection()

        matched = filter_events(new_events, filters)
        latest = newest_event(new_events)

        return Detection(
            matched=matched,
            new_cursor=Cursor.from_timestamp(latest.timestamp),
            new_count=len(new_events)
        )


class HashCursorDetector(ChangeDetector):
    """
    Detects any change to the filtered event set via a content hash.

    Recency plays no role: the whole filtered set is signed, and a
    different digest from the stored one re-announces the full set.
    """

    kind = CURSOR_HASH

    def detect(
        self,
        events: Sequence[EnnoblementEvent],
        cursor: Optional[Cursor],
        filters: Optional[FilterConfig]
    ) -> Detection:
        filtered = filter_events(events, filters)

        if not filtered:
            logger.info("No relevant events found")
            return Detection()

        digest = hash_signature(build_signature(filtered))
        cursor = self._usable_cursor(cursor)

        if cursor is not None and cursor.value == digest:
            logger.info("No changes detected in filtered events")
            return Detection()

        logger.info(f"Filtered event set changed ({len(filtered)} event(s), hash {digest[:12]})")

        return Detection(
            matched=filtered,
            new_cursor=Cursor.from_hash(digest),
            new_count=len(filtered)
        )


DETECTORS = {
    CURSOR_TIMESTAMP: TimestampCursorDetector,
    CURSOR_HASH: HashCursorDetector,
}


def create_detector(strategy: str) -> ChangeDetector:
    """
    Create the change detector for a cursor strategy.

    Args:
        strategy: "timestamp" or "hash".

    Raises:
        ValueError: For an unknown strategy name.
    """
    try:
        return DETECTORS[strategy.strip().lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown cursor strategy '{strategy}'. Expected one of: {', '.join(DETECTORS)}"
        ) from None
