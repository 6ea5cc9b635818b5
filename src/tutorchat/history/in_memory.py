"""In-memory key-value storage backend.

Simple dict-based storage with an optional byte quota.
Data is lost when the application exits.
"""

from ..errors import StorageQuotaError
from .base import KeyValueStorage, value_size


class InMemoryStorage(KeyValueStorage):
    """In-memory key-value storage (session-only).

    Suitable for single-session use or testing. When ``quota_bytes`` is set,
    the combined size of all keys and values may not exceed it.
    """

    def __init__(self, quota_bytes: int | None = None):
        self._quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    async def connect(self) -> None:
        """Initialize storage (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close storage (no-op for in-memory)."""
        pass

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            used = sum(
                value_size(k) + value_size(v)
                for k, v in self._items.items()
                if k != key
            )
            needed = value_size(key) + value_size(value)
            if used + needed > self._quota_bytes:
                raise StorageQuotaError(
                    f"Quota of {self._quota_bytes} bytes exceeded "
                    f"({used} used, {needed} requested)"
                )
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._items)

    @property
    def backend_type(self) -> str:
        return "memory"

    @property
    def quota_bytes(self) -> int | None:
        return self._quota_bytes
