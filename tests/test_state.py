"""
Tests for the state module.

Tests cover:
- Loading when no state exists
- Saving and reloading both cursor kinds
- Atomic writes leaving no temporary files
- Corrupt state files
- Clearing state
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from ennoblement_watcher.models import Cursor
from ennoblement_watcher.state import FileStateStore, StateStoreError


@pytest.fixture
def state_path(tmp_path):
    """Path for a state file inside a not-yet-existing directory."""
    return tmp_path / "data" / "state.json"


class TestFileStateStore:
    """Tests for the file-backed cursor store."""

    def test_load_missing_file(self, state_path):
        """Test a fresh deployment has no cursor."""
        store = FileStateStore(str(state_path))

        assert asyncio.run(store.load()) is None

    def test_save_and_load_timestamp(self, state_path):
        """Test a timestamp cursor round trip and its stored form."""
        store = FileStateStore(str(state_path))
        cursor = Cursor.from_timestamp("2024-12-15T14:30:00.000Z")

        asyncio.run(store.save(cursor))

        assert asyncio.run(store.load()) == cursor
        data = json.loads(state_path.read_text(encoding="utf-8"))
        assert data["lastProcessedTimestamp"] == "2024-12-15T14:30:00.000Z"
        assert "updatedAt" in data

    def test_save_and_load_hash(self, state_path):
        """Test a hash cursor round trip."""
        store = FileStateStore(str(state_path))
        cursor = Cursor.from_hash("ab" * 32)

        asyncio.run(store.save(cursor))

        assert asyncio.run(store.load()) == cursor

    def test_save_overwrites(self, state_path):
        """Test the newest cursor replaces the previous one."""
        store = FileStateStore(str(state_path))

        asyncio.run(store.save(Cursor.from_timestamp("2024-12-15T10:00:00.000Z")))
        asyncio.run(store.save(Cursor.from_timestamp("2024-12-15T11:00:00.000Z")))

        assert asyncio.run(store.load()).value == "2024-12-15T11:00:00.000Z"

    def test_no_temporary_files_left(self, state_path):
        """Test the atomic write cleans up after itself."""
        store = FileStateStore(str(state_path))

        asyncio.run(store.save(Cursor.from_hash("ff" * 32)))

        assert [p.name for p in state_path.parent.iterdir()] == ["state.json"]

    def test_failed_write_keeps_previous_state(self, state_path):
        """Test an interrupted write leaves the old cursor readable."""
        store = FileStateStore(str(state_path))
        asyncio.run(store.save(Cursor.from_timestamp("2024-12-15T10:00:00.000Z")))

        with patch("ennoblement_watcher.utils.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StateStoreError):
                asyncio.run(store.save(Cursor.from_timestamp("2024-12-15T11:00:00.000Z")))

        assert asyncio.run(store.load()).value == "2024-12-15T10:00:00.000Z"
        assert [p.name for p in state_path.parent.iterdir()] == ["state.json"]

    def test_corrupt_file_raises(self, state_path):
        """Test that an unparseable file is an error, not an empty state."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateStoreError):
            asyncio.run(FileStateStore(str(state_path)).load())

    def test_unexpected_format_raises(self, state_path):
        """Test that a JSON list is rejected."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text("[]", encoding="utf-8")

        with pytest.raises(StateStoreError):
            asyncio.run(FileStateStore(str(state_path)).load())

    def test_file_without_cursor(self, state_path):
        """Test a document with no cursor keys loads as absent."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text('{"updatedAt": "x"}', encoding="utf-8")

        assert asyncio.run(FileStateStore(str(state_path)).load()) is None

    def test_clear(self, state_path):
        """Test clearing removes the stored cursor."""
        store = FileStateStore(str(state_path))
        asyncio.run(store.save(Cursor.from_hash("00" * 32)))

        asyncio.run(store.clear())

        assert not state_path.exists()
        assert asyncio.run(store.load()) is None

    def test_clear_missing_file(self, state_path):
        """Test clearing an absent store is not an error."""
        asyncio.run(FileStateStore(str(state_path)).clear())
