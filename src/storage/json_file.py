"""
JSON file state store.

Default backend: keeps the treasury snapshot in a local JSON file, replaced
atomically on every save.
"""

import json
import os
import threading
from typing import Any

from storage.base import StateStore, StorageReadError, StorageWriteError


class JSONFileStateStore(StateStore):
    """
    Snapshot stored as a JSON file.

    Writes go to a temporary file that is renamed over the target, so a
    crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, file_path: str = "treasury_state.json"):
        self.file_path = file_path
        self._lock = threading.Lock()

    def load_state(self) -> dict[str, Any] | None:
        with self._lock:
            try:
                with open(self.file_path, encoding="utf-8") as f:
                    raw_data = f.read()
            except FileNotFoundError:
                return None
            except PermissionError as e:
                raise StorageReadError(f"Permission denied: {self.file_path}") from e
            except OSError as e:
                raise StorageReadError(f"Failed to read state: {e}") from e

            if not raw_data.strip():
                return None

            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError as e:
                raise StorageReadError(f"Invalid JSON format: {e}") from e
            if not isinstance(data, dict):
                raise StorageReadError("State file does not contain a JSON object")
            return data

    def save_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            temp_path = f"{self.file_path}.tmp"
            try:
                data = json.dumps(state, indent=2, sort_keys=True)
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(temp_path, self.file_path)
            except PermissionError as e:
                raise StorageWriteError(f"Permission denied: {self.file_path}") from e
            except (OSError, TypeError, ValueError) as e:
                raise StorageWriteError(f"Failed to save state: {e}") from e

    def is_available(self) -> bool:
        directory = os.path.dirname(self.file_path) or "."
        return os.path.isdir(directory) and os.access(directory, os.W_OK)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })
        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass
        return info

    def delete(self) -> bool:
        """Remove the state file. Returns False if it did not exist."""
        with self._lock:
            try:
                os.remove(self.file_path)
                return True
            except FileNotFoundError:
                return False
