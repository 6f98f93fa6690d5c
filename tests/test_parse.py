"""
Tests for the parse module.

Tests cover:
- Village, points, owner and timestamp cell parsing
- Row validation (required fields)
- Table extraction with the selector fallback chain
- Header, short and malformed rows
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from ennoblement_watcher.models import EnnoblementEvent
from ennoblement_watcher.parse import (
    ExtractionError,
    extract_events,
    format_instant,
    parse_player_and_tribe,
    parse_points,
    parse_row,
    parse_timestamp,
    parse_village_and_coordinates,
    select_rows,
)


def local_iso(year, month, day, hour, minute):
    """Expected ISO rendering of a local wall-clock time."""
    moment = datetime(year, month, day, hour, minute).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.000Z")


ENNOBLEMENTS_HTML = """
<html>
<body>
    <h2>Ennoblements</h2>
    <table class="table">
        <thead>
            <tr><th>Village</th><th>Points</th><th>Old Owner</th><th>New Owner</th><th>Date</th></tr>
        </thead>
        <tbody>
            <tr>
                <td><a href="/village/1">VillageName (450|465) K47</a></td>
                <td>1,234</td>
                <td><a href="/p/1">OldPlayer</a> <a href="/t/1">[SiSu]</a></td>
                <td><a href="/p/2">NewPlayer</a> <a href="/t/2">[EnemyTribe]</a></td>
                <td>15.12.2024 14:30</td>
            </tr>
            <tr>
                <td>AnotherVillage (451|463) K47</td>
                <td>2,567</td>
                <td>EnemyPlayer [EnemyTribe]</td>
                <td>SiSuPlayer [SiSu]</td>
                <td>15.12.2024 13:15</td>
            </tr>
            <tr>
                <td>ThirdVillage (453|460) K47</td>
                <td>890</td>
                <td>SomePlayer [NeutralTribe]</td>
                <td>AnotherPlayer [SiSu]</td>
                <td>15.12.2024 12:00</td>
            </tr>
        </tbody>
    </table>
</body>
</html>
"""


class TestParseVillageAndCoordinates:
    """Tests for village cell parsing."""

    def test_full_village_cell(self):
        """Test name, coordinates and continent are all extracted."""
        name, x, y, continent = parse_village_and_coordinates("VillageName (450|465) K47")

        assert name == "VillageName"
        assert (x, y) == (450, 465)
        assert continent == "K47"

    def test_missing_coordinates_default_to_zero(self):
        """Test that a cell without coordinates yields 0|0."""
        name, x, y, continent = parse_village_and_coordinates("Lonely Village K12")

        assert name == "Lonely Village"
        assert (x, y) == (0, 0)
        assert continent == "K12"

    def test_missing_continent_is_unknown(self):
        """Test the continent placeholder when no K-suffix is present."""
        name, x, y, continent = parse_village_and_coordinates("Somewhere (100|200)")

        assert name == "Somewhere"
        assert (x, y) == (100, 200)
        assert continent == "Unknown"

    def test_name_with_spaces_is_trimmed(self):
        """Test that multi-word names keep their inner spaces only."""
        name, _, _, _ = parse_village_and_coordinates("  Barbarian   Village  (5|7)  K0 ")

        assert name == "Barbarian Village"

    def test_only_coordinates_gives_empty_name(self):
        """Test that nothing but coordinates leaves an empty name."""
        name, x, y, _ = parse_village_and_coordinates("(450|465) K47")

        assert name == ""
        assert (x, y) == (450, 465)


class TestParsePoints:
    """Tests for points cell parsing."""

    def test_thousands_separator(self):
        """Test that commas are stripped."""
        assert parse_points("1,234") == 1234

    def test_plain_number(self):
        """Test a number without separators."""
        assert parse_points("890") == 890

    def test_malformed_points_default_to_zero(self):
        """Test that a cell without digits yields 0 instead of raising."""
        assert parse_points("n/a") == 0
        assert parse_points("") == 0

    def test_first_digit_run_is_used(self):
        """Test that trailing text after the number is ignored."""
        assert parse_points("10,512 pts (+3)") == 10512


class TestParsePlayerAndTribe:
    """Tests for owner cell parsing."""

    def test_player_with_tribe(self):
        """Test splitting player and bracketed tribe."""
        assert parse_player_and_tribe("OldPlayer [SiSu]") == ("OldPlayer", "SiSu")

    def test_player_without_tribe(self):
        """Test that an absent tribe is None, not an empty string."""
        player, tribe = parse_player_and_tribe("LonePlayer")

        assert player == "LonePlayer"
        assert tribe is None

    def test_tribe_is_trimmed(self):
        """Test whitespace inside the brackets is removed."""
        assert parse_player_and_tribe("Player [ SiSu ]") == ("Player", "SiSu")

    def test_tribe_only_leaves_empty_player(self):
        """Test that a cell with only a tribe tag has no player."""
        player, tribe = parse_player_and_tribe("[SiSu]")

        assert player == ""
        assert tribe == "SiSu"


class TestParseTimestamp:
    """Tests for timestamp normalization."""

    def test_dotted_day_first_format(self):
        """Test DD.MM.YYYY HH:MM is read as local time."""
        assert parse_timestamp("15.12.2024 14:30") == local_iso(2024, 12, 15, 14, 30)

    def test_iso_date_format(self):
        """Test YYYY-MM-DD HH:MM is read as local time."""
        assert parse_timestamp("2024-12-15 14:30") == local_iso(2024, 12, 15, 14, 30)

    def test_us_slash_format(self):
        """Test MM/DD/YYYY HH:MM is read month first."""
        assert parse_timestamp("12/15/2024 14:30") == local_iso(2024, 12, 15, 14, 30)

    def test_output_shape(self):
        """Test the canonical rendering has milliseconds and a Z suffix."""
        result = parse_timestamp("01.02.2025 09:05")

        assert len(result) == len("2025-02-01T09:05:00.000Z")
        assert result.endswith(".000Z")

    def test_unknown_format_passes_through(self):
        """Test that unrecognized text is kept unchanged."""
        assert parse_timestamp("2025-08-02 - 18:08:12") == "2025-08-02 - 18:08:12"

    def test_empty_cell_uses_current_instant(self):
        """Test the current-instant fallback for an empty cell."""
        now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

        assert parse_timestamp("", now=now) == "2025-01-01T12:00:00.000Z"

    def test_invalid_calendar_date_falls_through(self):
        """Test an impossible date is not constructed."""
        assert parse_timestamp("31.02.2024 10:00") == "31.02.2024 10:00"


class TestFormatInstant:
    """Tests for ISO rendering."""

    def test_aware_instant(self):
        """Test milliseconds are truncated to three digits."""
        moment = datetime(2024, 12, 15, 14, 30, 5, 123456, tzinfo=timezone.utc)

        assert format_instant(moment) == "2024-12-15T14:30:05.123Z"


class TestParseRow:
    """Tests for full row parsing."""

    def test_reference_row(self):
        """Test the reference row produces the expected record."""
        event = parse_row([
            "VillageName (450|465) K47",
            "1,234",
            "OldPlayer [SiSu]",
            "NewPlayer [EnemyTribe]",
            "15.12.2024 14:30",
        ])

        assert event == EnnoblementEvent(
            village_name="VillageName",
            x=450,
            y=465,
            continent="K47",
            points=1234,
            old_player="OldPlayer",
            old_tribe="SiSu",
            new_player="NewPlayer",
            new_tribe="EnemyTribe",
            timestamp=local_iso(2024, 12, 15, 14, 30),
        )

    def test_malformed_points_still_parses(self):
        """Test that bad points give 0, not a rejected row."""
        event = parse_row(["V (1|2) K0", "???", "A", "B", "15.12.2024 14:30"])

        assert event is not None
        assert event.points == 0

    def test_missing_old_player_rejected(self):
        """Test that a row without an old owner yields no record."""
        assert parse_row(["V (1|2) K0", "10", "[SiSu]", "B", "15.12.2024 14:30"]) is None

    def test_missing_new_player_rejected(self):
        """Test that a row without a new owner yields no record."""
        assert parse_row(["V (1|2) K0", "10", "A", "", "15.12.2024 14:30"]) is None

    def test_missing_village_name_rejected(self):
        """Test that a row without a village name yields no record."""
        assert parse_row(["(1|2) K0", "10", "A", "B", "15.12.2024 14:30"]) is None

    def test_too_few_cells_rejected(self):
        """Test rows with fewer than four cells."""
        assert parse_row(["V (1|2)", "10", "A"]) is None

    def test_events_are_immutable(self):
        """Test that parsed records cannot be modified."""
        event = parse_row(["V (1|2) K0", "10", "A", "B", "15.12.2024 14:30"])

        with pytest.raises(AttributeError):
            event.points = 5


class TestExtractEvents:
    """Tests for table extraction."""

    def test_extracts_rows_in_page_order(self):
        """Test all rows are parsed, most recent first."""
        events = extract_events(ENNOBLEMENTS_HTML, "table.table tbody tr", "https://example.com")

        assert [e.village_name for e in events] == ["VillageName", "AnotherVillage", "ThirdVillage"]
        assert [e.points for e in events] == [1234, 2567, 890]

    def test_reads_text_across_links(self):
        """Test owner cells split over several links."""
        events = extract_events(ENNOBLEMENTS_HTML)

        assert events[0].old_player == "OldPlayer"
        assert events[0].old_tribe == "SiSu"
        assert events[0].new_tribe == "EnemyTribe"

    def test_header_rows_skipped(self):
        """Test that rows containing th cells are not parsed."""
        events = extract_events(ENNOBLEMENTS_HTML, "tr")

        assert len(events) == 3

    def test_falls_back_when_selector_misses(self):
        """Test the fallback chain when the configured selector matches nothing."""
        events = extract_events(ENNOBLEMENTS_HTML, "table.does-not-exist tr")

        assert len(events) == 3

    def test_invalid_selector_falls_back(self):
        """Test a syntactically invalid selector does not abort extraction."""
        events = extract_events(ENNOBLEMENTS_HTML, "table[[[")

        assert len(events) == 3

    def test_table_without_tbody(self):
        """Test plain tables where no tbody element exists."""
        html = """
        <table>
            <tr><td>A (1|2) K0</td><td>5</td><td>P1 [X]</td><td>P2</td><td>15.12.2024 14:30</td></tr>
        </table>
        """
        events = extract_events(html)

        assert len(events) == 1
        assert events[0].new_tribe is None

    def test_short_and_invalid_rows_skipped(self):
        """Test rows with few cells or missing owners are dropped silently."""
        html = """
        <table class="table"><tbody>
            <tr><td colspan="5">Page 1 of 3</td></tr>
            <tr><td>Good (1|2) K0</td><td>5</td><td>P1</td><td>P2</td><td>15.12.2024 14:30</td></tr>
            <tr><td>Bad (1|2) K0</td><td>5</td><td></td><td>P2</td><td>15.12.2024 14:30</td></tr>
        </tbody></table>
        """
        events = extract_events(html)

        assert [e.village_name for e in events] == ["Good"]

    def test_row_error_does_not_abort_extraction(self):
        """Test that an exception in one row only skips that row."""
        real_parse_row = parse_row
        calls = []

        def flaky_parse_row(cells):
            calls.append(cells)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real_parse_row(cells)

        with patch("ennoblement_watcher.parse.parse_row", side_effect=flaky_parse_row):
            events = extract_events(ENNOBLEMENTS_HTML)

        assert [e.village_name for e in events] == ["AnotherVillage", "ThirdVillage"]

    def test_no_rows_raises(self):
        """Test that a page without any rows is an extraction error."""
        with pytest.raises(ExtractionError) as exc_info:
            extract_events("<html><body><p>Maintenance</p></body></html>", page_url="https://example.com")

        assert exc_info.value.page_url == "https://example.com"

    def test_rows_without_data_cells_yield_empty_list(self):
        """Test that a header-only table is not an error but has no events."""
        html = "<table><tr><th>Village</th><th>Points</th></tr></table>"

        assert extract_events(html) == []


class TestSelectRows:
    """Tests for the selector fallback chain."""

    def test_configured_selector_wins(self):
        """Test that the configured selector is reported when it matches."""
        from bs4 import BeautifulSoup

        soup = BeautifulSoup(ENNOBLEMENTS_HTML, "html.parser")
        rows, selector = select_rows(soup, "table.table tbody tr")

        assert selector == "table.table tbody tr"
        assert len(rows) == 3

    def test_nothing_matches(self):
        """Test the empty result when no selector matches."""
        from bs4 import BeautifulSoup

        rows, selector = select_rows(BeautifulSoup("<p>x</p>", "html.parser"), "tr.x")

        assert rows == []
        assert selector is None
