"""
Data model for the Ennoblement Watcher pipeline.

Value records shared between the parser, change detectors, formatter
and the poll cycle orchestrator.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


# Placeholder continent when the village cell carries no K-suffix
UNKNOWN_CONTINENT = "Unknown"

CURSOR_TIMESTAMP = "timestamp"
CURSOR_HASH = "hash"


@dataclass(frozen=True)
class EnnoblementEvent:
    """
    A single change of village ownership.

    Attributes:
        village_name: Village name with coordinates and continent stripped.
        x: X coordinate, 0 when absent from the source text.
        y: Y coordinate, 0 when absent from the source text.
        continent: Continent in K<digits> form, or "Unknown".
        points: Village points at the time of the change, 0 if unparseable.
        old_player: Previous owner.
        old_tribe: Previous owner's tribe tag, None when unaffiliated.
        new_player: New owner.
        new_tribe: New owner's tribe tag, None when unaffiliated.
        timestamp: Canonical timestamp string (ISO-8601 UTC, or the
                   "YYYY-MM-DD - HH:MM:SS" local-time form).
    """
    village_name: str
    x: int
    y: int
    continent: str
    points: int
    old_player: str
    old_tribe: Optional[str]
    new_player: str
    new_tribe: Optional[str]
    timestamp: str

    @property
    def coordinates(self) -> str:
        return f"{self.x}|{self.y}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return asdict(self)


@dataclass(frozen=True)
class FilterConfig:
    """
    Criteria narrowing which events trigger a notification.

    An event matches when either tribe equals faction_name
    (case-insensitive, trimmed) and x < x_max_exclusive and
    y > y_min_exclusive.
    """
    faction_name: str
    x_max_exclusive: float
    y_min_exclusive: float


@dataclass(frozen=True)
class Cursor:
    """
    Persisted marker of how far processing has progressed.

    kind is either CURSOR_TIMESTAMP (value is the timestamp of the most
    recently processed event) or CURSOR_HASH (value is the lowercase hex
    digest of the last filtered event set).
    """
    kind: str
    value: str

    @classmethod
    def from_timestamp(cls, timestamp: str) -> "Cursor":
        return cls(kind=CURSOR_TIMESTAMP, value=timestamp)

    @classmethod
    def from_hash(cls, digest: str) -> "Cursor":
        return cls(kind=CURSOR_HASH, value=digest)

    def to_dict(self) -> Dict[str, str]:
        if self.kind == CURSOR_TIMESTAMP:
            return {"lastProcessedTimestamp": self.value}
        return {"lastHash": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["Cursor"]:
        """
        Build a cursor from its stored form.

        Returns:
            The cursor, or None if the mapping holds neither key.
        """
        timestamp = data.get("lastProcessedTimestamp")
        if isinstance(timestamp, str) and timestamp:
            return cls.from_timestamp(timestamp)

        digest = data.get("lastHash")
        if isinstance(digest, str) and digest:
            return cls.from_hash(digest)

        return None


class CycleOutcome(Enum):
    """Terminal outcome of a poll cycle that did not fail."""
    NO_OP = "no-op"
    NOTIFIED = "matched-and-notified"
    NOT_NOTIFIED = "matched-but-not-notified"


@dataclass
class CycleSummary:
    """
    Result of one poll cycle.

    Attributes:
        outcome: Terminal outcome of the cycle.
        processed_count: Number of records extracted from the page.
        new_count: Number of records considered new by the detector.
        matched_count: Number of records that matched the filters.
        notified: Whether a notification was delivered.
        state_changed: Whether the cursor was persisted.
        message: Human-readable description for logs.
    """
    outcome: CycleOutcome
    processed_count: int = 0
    new_count: int = 0
    matched_count: int = 0
    notified: bool = False
    state_changed: bool = False
    message: str = ""
