"""Abstract base class for key-value storage backends.

This module defines the interface the session store persists through.
The abstraction hides:
- Storage medium (process memory, SQLite file, etc.)
- Quota accounting
- Connection management
"""

from abc import ABC, abstractmethod


class KeyValueStorage(ABC):
    """Abstract textual key-value storage with a size quota.

    Implementations raise ``StorageQuotaError`` when a write would exceed
    their quota and ``StorageError`` for any other write failure.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the storage backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the storage backend gracefully."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None if absent."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Delete ``key``. Missing keys are ignored."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """List all stored keys."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "KeyValueStorage":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()


def value_size(value: str) -> int:
    """Size of a stored value in bytes (UTF-8)."""
    return len(value.encode("utf-8"))
