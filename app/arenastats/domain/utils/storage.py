"""
Key-value persistence for local engine state.

The engine only needs three operations on a flat namespace of JSON values,
so any backend implementing KeyValueStore can be plugged in.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from arenastats.domain.utils.file_lock import file_lock
from arenastats.exceptions import DataError
from arenastats.logging_config import get_logger

logger = get_logger(__name__)

GAME_STATE_KEY = "gameState"
ACCESS_KEY_KEY = "accessKey"


class KeyValueStore(Protocol):
    """Durable key-value primitive used to save and restore local state."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, values are copied through JSON like a real backend."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """All keys in one JSON document on disk, guarded by an advisory file lock."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise DataError("corrupt_state", f"State file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise DataError("corrupt_state", f"State file {self.path} must contain an object")
        return data

    def _read_for_update(self) -> dict[str, Any]:
        # A corrupt document is replaced by the next write
        try:
            return self._read()
        except DataError as e:
            logger.warning(f"Overwriting unreadable state file: {e.message}")
            return {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Any | None:
        with file_lock(str(self.path), exclusive=False):
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with file_lock(str(self.path), exclusive=True):
            data = self._read_for_update()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with file_lock(str(self.path), exclusive=True):
            data = self._read_for_update()
            if key in data:
                del data[key]
                self._write(data)
