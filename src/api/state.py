"""
Shared state for the YieldSteward status API.

Holds the single treasury instance and its state store. Every route that
reads or mutates treasury state runs under `treasury_lock`; mutating routes
persist the snapshot afterwards.
"""

import logging
import threading

from storage.base import StateStore
from treasury import YieldTreasury

logger = logging.getLogger(__name__)

# ============================================================
# Shared State
# ============================================================

treasury: YieldTreasury | None = None
store: StateStore | None = None

# Serializes treasury access across server threads
treasury_lock = threading.Lock()


def init_state(new_treasury: YieldTreasury | None, new_store: StateStore | None = None) -> None:
    """Install the treasury (and optional store) served by the API."""
    global treasury, store
    treasury = new_treasury
    store = new_store


def get_treasury() -> YieldTreasury | None:
    return treasury


def save_state() -> None:
    """
    Persist the treasury snapshot, if a store is configured.

    Raises:
        StorageError: If the snapshot cannot be written
    """
    if treasury is None or store is None:
        return
    store.save_state(treasury.to_dict())
