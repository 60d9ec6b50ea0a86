"""Utility modules for local persistence."""

from arenastats.domain.utils.file_lock import file_lock
from arenastats.domain.utils.storage import (
    ACCESS_KEY_KEY,
    GAME_STATE_KEY,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
)

__all__ = [
    "ACCESS_KEY_KEY",
    "GAME_STATE_KEY",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "file_lock",
]
