"""
In-memory state store.

Holds the snapshot for the life of the process; used by tests and by the
simulation mode of the CLI.
"""

import copy
import threading
from typing import Any

from storage.base import StateStore


class MemoryStateStore(StateStore):
    """In-memory store. Data is lost when the process exits."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data = copy.deepcopy(initial)
        self._lock = threading.Lock()
        self.save_count = 0

    def load_state(self) -> dict[str, Any] | None:
        with self._lock:
            # Copies keep callers from mutating the stored snapshot
            return copy.deepcopy(self._data)

    def save_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            self._data = copy.deepcopy(state)
            self.save_count += 1

    def is_available(self) -> bool:
        return True

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update({"has_data": self._data is not None, "save_count": self.save_count})
        return info

    def clear(self) -> None:
        with self._lock:
            self._data = None
