"""
Parse module for the Ennoblement Watcher pipeline.

This module handles parsing the ennoblement statistics page:
- Locating the event table rows with a selector fallback chain
- Turning each row's cell texts into a typed EnnoblementEvent
- Skipping header rows and malformed rows without aborting extraction
"""

import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ennoblement_watcher.models import UNKNOWN_CONTINENT, EnnoblementEvent
from ennoblement_watcher.utils import get_logger, sanitize_text


# Module logger
logger = get_logger("parse")

DEFAULT_ROW_SELECTOR = "table.table tbody tr"

# Progressively less specific row selectors, tried in order after the
# configured one until a selector yields at least one row.
FALLBACK_ROW_SELECTORS = [
    # Specific table class
    "table.table tbody tr",
    "table.table tr",
    # Generic table
    "table tbody tr",
    # Table containing a recognizable header keyword
    'table:-soup-contains("Ennoblements") tr',
    'table:-soup-contains("Village") tr',
    'table:-soup-contains("Old Owner") tr',
    # Any tbody row
    "tbody tr",
    # Any row
    "tr",
]

MIN_CELLS_PER_ROW = 4

COORDINATES_PATTERN = re.compile(r"\(?\s*(\d+)\|(\d+)\s*\)?")
CONTINENT_PATTERN = re.compile(r"K(\d+)")
DIGITS_PATTERN = re.compile(r"(\d+)")
TRIBE_PATTERN = re.compile(r"\[(.*?)\]")

# (pattern, order of the captured groups) tried in order against the cell text
TIMESTAMP_FORMATS: List[Tuple[re.Pattern, Tuple[str, ...]]] = [
    # DD.MM.YYYY HH:MM
    (re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2}):(\d{2})"),
     ("day", "month", "year", "hour", "minute")),
    # YYYY-MM-DD HH:MM
    (re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})\s+(\d{1,2}):(\d{2})"),
     ("year", "month", "day", "hour", "minute")),
    # MM/DD/YYYY HH:MM
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})"),
     ("month", "day", "year", "hour", "minute")),
]


class ExtractionError(Exception):
    """Raised when a page holds no locatable event table rows at all."""

    def __init__(self, message: str, page_url: Optional[str] = None):
        super().__init__(message)
        self.page_url = page_url


def format_instant(moment: datetime) -> str:
    """
    Render an instant as ISO-8601 UTC with millisecond precision.

    Naive datetimes are interpreted as local time.

    Example:
        2024-12-15T14:30:00.000Z
    """
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_village_and_coordinates(cell: str) -> Tuple[str, int, int, str]:
    """
    Split a village cell into name, coordinates and continent.

    Args:
        cell: Cell text such as "VillageName (450|465) K47".

    Returns:
        Tuple of (village_name, x, y, continent). Coordinates default to 0
        and the continent to "Unknown" when absent.
    """
    text = sanitize_text(cell)
    x, y = 0, 0

    coord_match = COORDINATES_PATTERN.search(text)
    if coord_match:
        x = int(coord_match.group(1))
        y = int(coord_match.group(2))
        text = text[:coord_match.start()] + " " + text[coord_match.end():]

    # The continent is a suffix, so prefer the last K<digits> token
    continent = UNKNOWN_CONTINENT
    continent_matches = list(CONTINENT_PATTERN.finditer(text))
    if continent_matches:
        last = continent_matches[-1]
        continent = f"K{last.group(1)}"
        text = text[:last.start()] + " " + text[last.end():]

    return sanitize_text(text), x, y, continent


def parse_points(cell: str) -> int:
    """
    Extract village points, ignoring thousands separators.

    Returns:
        The first run of digits as an integer, or 0 if there is none.
    """
    cleaned = (cell or "").replace(",", "")
    match = DIGITS_PATTERN.search(cleaned)
    return int(match.group(1)) if match else 0


def parse_player_and_tribe(cell: str) -> Tuple[str, Optional[str]]:
    """
    Split an owner cell into player name and tribe tag.

    Args:
        cell: Cell text such as "OldPlayer [SiSu]".

    Returns:
        Tuple of (player, tribe). tribe is None when the cell carries no
        bracketed tag.
    """
    text = cell or ""
    tribe: Optional[str] = None

    match = TRIBE_PATTERN.search(text)
    if match:
        tribe = match.group(1).strip()
        text = text[:match.start()] + " " + text[match.end():]

    return sanitize_text(text), tribe


def parse_timestamp(cell: str, now: Optional[datetime] = None) -> str:
    """
    Normalize a date/time cell into a canonical timestamp string.

    Known formats (DD.MM.YYYY HH:MM, YYYY-MM-DD HH:MM, MM/DD/YYYY HH:MM)
    are read as local time and rendered as ISO-8601 UTC. Any other
    non-empty text is passed through unchanged; empty text becomes the
    current instant.

    Args:
        cell: Timestamp cell text.
        now: Instant to substitute for empty text (defaults to now).

    Returns:
        Canonical timestamp string.
    """
    text = sanitize_text(cell)

    for pattern, fields in TIMESTAMP_FORMATS:
        match = pattern.search(text)
        if not match:
            continue
        parts = dict(zip(fields, (int(g) for g in match.groups())))
        try:
            moment = datetime(
                parts["year"], parts["month"], parts["day"],
                parts["hour"], parts["minute"]
            )
        except ValueError:
            logger.debug(f"Out of range date in timestamp cell: {text!r}")
            continue
        return format_instant(moment)

    if text:
        return text

    # TODO: reject the row instead once the source page is known to always
    # carry a date column; substituting "now" fabricates event times.
    logger.warning("Empty timestamp cell, substituting the current instant")
    return format_instant(now or datetime.now(timezone.utc))


def parse_row(cells: Sequence[str]) -> Optional[EnnoblementEvent]:
    """
    Parse one table row's cell texts into an EnnoblementEvent.

    Cell order: village, points, old owner, new owner, timestamp.

    Args:
        cells: Raw text of each cell in the row.

    Returns:
        The parsed event, or None if a required field ends up empty.
    """
    if len(cells) < MIN_CELLS_PER_ROW:
        return None

    village_name, x, y, continent = parse_village_and_coordinates(cells[0])
    points = parse_points(cells[1])
    old_player, old_tribe = parse_player_and_tribe(cells[2])
    new_player, new_tribe = parse_player_and_tribe(cells[3])
    timestamp = parse_timestamp(cells[4] if len(cells) > 4 else "")

    if not village_name or not old_player or not new_player or not timestamp:
        return None

    return EnnoblementEvent(
        village_name=village_name,
        x=x,
        y=y,
        continent=continent,
        points=points,
        old_player=old_player,
        old_tribe=old_tribe,
        new_player=new_player,
        new_tribe=new_tribe,
        timestamp=timestamp,
    )


def select_rows(soup: BeautifulSoup, row_selector: Optional[str] = None) -> Tuple[List[Tag], Optional[str]]:
    """
    Locate candidate event rows, falling back to less specific selectors.

    Args:
        soup: Parsed page.
        row_selector: Preferred selector, tried first.

    Returns:
        Tuple of (rows, selector that produced them). rows is empty and
        the selector None when nothing in the chain matched.
    """
    selectors = [row_selector] if row_selector else []
    selectors.extend(s for s in FALLBACK_ROW_SELECTORS if s != row_selector)

    for selector in selectors:
        try:
            rows = soup.select(selector)
        except SelectorSyntaxError as e:
            logger.warning(f"Invalid row selector '{selector}': {e}")
            continue

        if rows:
            logger.debug(f"Found {len(rows)} row(s) with selector '{selector}'")
            return rows, selector

    return [], None


def get_cell_texts(row: Tag) -> Optional[List[str]]:
    """
    Return the text of a row's data cells, or None for header/short rows.
    """
    if row.find("th") is not None:
        return None

    cells = row.find_all("td", recursive=False)
    if len(cells) < MIN_CELLS_PER_ROW:
        return None

    return [sanitize_text(cell.get_text(" ")) for cell in cells]


def extract_events(
    html: str,
    row_selector: Optional[str] = DEFAULT_ROW_SELECTOR,
    page_url: str = ""
) -> List[EnnoblementEvent]:
    """
    Extract ennoblement events from the statistics page HTML.

    Rows that cannot be parsed are logged and skipped. Events are returned
    in page order, which the source keeps most-recent-first.

    Args:
        html: Raw HTML document.
        row_selector: Preferred CSS selector for event rows.
        page_url: Page URL, used for diagnostics only.

    Returns:
        List of parsed events.

    Raises:
        ExtractionError: If no selector in the chain yields any row.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows, selector = select_rows(soup, row_selector)

    if not rows:
        logger.error(f"No ennoblement table rows found on {page_url or 'page'}")
        raise ExtractionError("No ennoblement table rows found on page", page_url)

    events: List[EnnoblementEvent] = []
    skipped = 0

    for index, row in enumerate(rows):
        cells = get_cell_texts(row)
        if cells is None:
            continue

        try:
            event = parse_row(cells)
        except Exception as e:
            logger.warning(f"Failed to parse row {index}, skipping: {e}")
            skipped += 1
            continue

        if event is None:
            logger.debug(f"Row {index} is missing required fields, skipping")
            skipped += 1
            continue

        events.append(event)

    logger.info(
        f"Extracted {len(events)} event(s) from {page_url or 'page'} "
        f"using '{selector}' ({skipped} row(s) skipped)"
    )

    return events
