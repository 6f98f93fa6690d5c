"""
Utility functions for the Ennoblement Watcher pipeline.

This module provides:
- Central logging configuration
- Safe JSON read/write helpers
- Shared helper utilities used across modules
"""

import json
import logging
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional


class JsonFileError(Exception):
    """Raised when a JSON file exists but cannot be read or written."""

    def __init__(self, message: str, filepath: str):
        super().__init__(message)
        self.filepath = filepath


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("ennoblement_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"ennoblement_watcher.{name}")


def read_json(filepath: str) -> Optional[Any]:
    """
    Read JSON data from a file.

    A missing file is not an error and yields None. Unlike a lenient
    reader, a file that exists but cannot be decoded raises, so callers
    never mistake a corrupt file for an absent one.

    Args:
        filepath: Path to the JSON file.

    Returns:
        Parsed JSON data, or None if the file does not exist.

    Raises:
        JsonFileError: If the file exists but is unreadable or invalid JSON.
    """
    logger = get_logger("utils")
    path = Path(filepath)

    if not path.exists():
        logger.debug(f"File does not exist: {filepath}")
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise JsonFileError(f"Invalid JSON in {filepath}: {e}", filepath) from e
    except OSError as e:
        raise JsonFileError(f"Cannot read {filepath}: {e}", filepath) from e

    logger.debug(f"Successfully read JSON from {filepath}")
    return data


def write_json_atomic(filepath: str, data: Any, indent: int = 2) -> None:
    """
    Write JSON data to a file using an atomic write operation.

    Uses a temporary file in the target directory and an atomic rename so
    an interrupted write never leaves a half-written file behind.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Raises:
        JsonFileError: If the file could not be written.
    """
    logger = get_logger("utils")
    path = Path(filepath)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=f".{path.name}.",
            dir=path.parent
        )
    except OSError as e:
        raise JsonFileError(f"Cannot prepare {filepath}: {e}", filepath) from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except (OSError, TypeError, ValueError) as e:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise JsonFileError(f"Cannot write {filepath}: {e}", filepath) from e

    logger.debug(f"Successfully wrote JSON to {filepath}")


def remove_file(filepath: str) -> bool:
    """
    Remove a file if it exists.

    Args:
        filepath: Path of the file to remove.

    Returns:
        True if a file was removed, False if it did not exist.

    Raises:
        JsonFileError: If the file exists but could not be removed.
    """
    try:
        os.unlink(filepath)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise JsonFileError(f"Cannot remove {filepath}: {e}", filepath) from e


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Interpret common truthy strings ("true", "1", "yes", "on")."""
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def sanitize_text(text: Optional[str]) -> str:
    """
    Clean and normalize text content.

    Removes extra whitespace, newlines, and normalizes spacing.

    Args:
        text: Raw text to sanitize.

    Returns:
        Cleaned text string.
    """
    if not text:
        return ""

    cleaned = re.sub(r"\s+", " ", text)
    return cleaned.strip()
