"""
State module for the Ennoblement Watcher pipeline.

This module persists the change detection cursor between poll cycles.
The file-backed store writes atomically (temporary file and rename) so
a crash mid-write never leaves an unparseable cursor behind.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from ennoblement_watcher.models import Cursor
from ennoblement_watcher.utils import JsonFileError, get_logger, read_json, remove_file, write_json_atomic


# Module logger
logger = get_logger("state")

DEFAULT_STATE_PATH = "data/state.json"


class StateStoreError(Exception):
    """Raised when the cursor cannot be read or written."""


class StateStore:
    """Base class for cursor storage."""

    async def load(self) -> Optional[Cursor]:
        raise NotImplementedError

    async def save(self, cursor: Cursor) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class FileStateStore(StateStore):
    """
    Stores the cursor as a small JSON document.

    Example file:
        {"lastProcessedTimestamp": "2024-12-15T14:30:00.000Z",
         "updatedAt": "2024-12-15T14:35:02.114Z"}

    clear() deletes the file. An absent file means the processing horizon
    is unknown, which the timestamp strategy answers with a silent
    bootstrap rather than a replay of history.
    """

    def __init__(self, filepath: str = DEFAULT_STATE_PATH):
        self.filepath = filepath

    def load_sync(self) -> Optional[Cursor]:
        try:
            data = read_json(self.filepath)
        except JsonFileError as e:
            logger.error(f"Error loading state: {e}")
            raise StateStoreError(str(e)) from e

        if data is None:
            logger.info("No existing state file found, starting fresh")
            return None

        if not isinstance(data, dict):
            raise StateStoreError(f"Unexpected state format in {self.filepath}")

        cursor = Cursor.from_dict(data)
        if cursor is None:
            logger.info(f"State file {self.filepath} holds no cursor")
        else:
            logger.info(f"Loaded {cursor.kind} cursor from {self.filepath}")

        return cursor

    def save_sync(self, cursor: Cursor) -> None:
        data = cursor.to_dict()
        data["updatedAt"] = datetime.now(timezone.utc).isoformat()

        try:
            write_json_atomic(self.filepath, data)
        except JsonFileError as e:
            logger.error(f"Error saving state: {e}")
            raise StateStoreError(str(e)) from e

        logger.info(f"Saved {cursor.kind} cursor {cursor.value} to {self.filepath}")

    def clear_sync(self) -> None:
        try:
            removed = remove_file(self.filepath)
        except JsonFileError as e:
            logger.error(f"Error clearing state: {e}")
            raise StateStoreError(str(e)) from e

        if removed:
            logger.info("State file cleared")
        else:
            logger.info("State file already does not exist")

    async def load(self) -> Optional[Cursor]:
        return await asyncio.to_thread(self.load_sync)

    async def save(self, cursor: Cursor) -> None:
        await asyncio.to_thread(self.save_sync, cursor)

    async def clear(self) -> None:
        await asyncio.to_thread(self.clear_sync)
