"""
Abstract base class for treasury state stores.

The treasury runs as a periodically invoked process; between invocations its
mutable state (validator reference, yield figures, drain request) lives in
a state store.
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StateStore(ABC):
    """
    Persistence interface for the treasury snapshot.

    Snapshots are the plain dictionaries produced by `YieldTreasury.to_dict()`.
    """

    @abstractmethod
    def load_state(self) -> dict[str, Any] | None:
        """
        Load the last saved snapshot.

        Returns:
            Snapshot dictionary, or None if nothing was saved yet.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def save_state(self, state: dict[str, Any]) -> None:
        """
        Replace the saved snapshot.

        Raises:
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    def get_info(self) -> dict[str, Any]:
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
