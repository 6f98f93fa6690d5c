"""
Filter module for the Ennoblement Watcher pipeline.

This module decides which ennoblement events are relevant:
- Faction match on either the old or the new owner's tribe
- Coordinate bounds (x below a maximum, y above a minimum)
"""

from typing import Iterable, List, Optional

from ennoblement_watcher.models import EnnoblementEvent, FilterConfig
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("filter")


def normalize_tribe(tribe: Optional[str]) -> str:
    """
    Normalize a tribe tag for comparison.

    Args:
        tribe: Tribe tag or None.

    Returns:
        Lowercased, trimmed tag; empty string for None.
    """
    if not tribe:
        return ""
    return tribe.strip().lower()


def matches_faction(event: EnnoblementEvent, faction_name: str) -> bool:
    """Check whether either side of the change belongs to the faction."""
    wanted = normalize_tribe(faction_name)
    if not wanted:
        return False
    return wanted in (normalize_tribe(event.old_tribe), normalize_tribe(event.new_tribe))


def matches_coordinates(event: EnnoblementEvent, filters: FilterConfig) -> bool:
    """Check x < x_max_exclusive and y > y_min_exclusive."""
    return event.x < filters.x_max_exclusive and event.y > filters.y_min_exclusive


def event_matches(event: EnnoblementEvent, filters: Optional[FilterConfig]) -> bool:
    """
    Check whether an event passes the filter configuration.

    Args:
        event: Event to test.
        filters: Active filter configuration, or None when filtering is
                 disabled (every event matches).

    Returns:
        True if the event is relevant.
    """
    if filters is None:
        return True
    return matches_faction(event, filters.faction_name) and matches_coordinates(event, filters)


def filter_events(
    events: Iterable[EnnoblementEvent],
    filters: Optional[FilterConfig]
) -> List[EnnoblementEvent]:
    """
    Keep only events matching the filter configuration, preserving order.

    Args:
        events: Events to filter.
        filters: Active filter configuration or None.

    Returns:
        Matching events.
    """
    events = list(events)
    matched = [e for e in events if event_matches(e, filters)]

    if filters is None:
        logger.debug(f"Filtering disabled, all {len(matched)} event(s) pass")
    else:
        logger.info(
            f"Filtered {len(events)} event(s) to {len(matched)} "
            f"(faction={filters.faction_name}, x<{filters.x_max_exclusive}, "
            f"y>{filters.y_min_exclusive})"
        )

    return matched
