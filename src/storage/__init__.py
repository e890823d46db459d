"""
State persistence for YieldSteward.

Pluggable stores for the treasury snapshot between invocations:

- JSON file (default)
- Memory (for testing and simulation)

Usage:
    from storage import get_state_store

    store = get_state_store()
    store.save_state(treasury.to_dict())
    snapshot = store.load_state()
"""

import os

from storage.base import StateStore, StorageError, StorageReadError, StorageWriteError
from storage.json_file import JSONFileStateStore
from storage.memory import MemoryStateStore

__all__ = [
    "JSONFileStateStore",
    "MemoryStateStore",
    "StateStore",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_state_store",
]


def get_state_store() -> StateStore:
    """
    Get the configured state store based on environment variables.

    Environment variables:
        STEWARD_STATE_BACKEND: "json" (default) or "memory"
        STEWARD_STATE_FILE: Path for the JSON store (default: treasury_state.json)
    """
    backend_type = os.getenv("STEWARD_STATE_BACKEND", "json").lower()

    if backend_type == "json":
        return JSONFileStateStore(os.getenv("STEWARD_STATE_FILE", "treasury_state.json"))
    elif backend_type == "memory":
        return MemoryStateStore()
    else:
        raise StorageError(f"Unknown state backend: {backend_type}")
