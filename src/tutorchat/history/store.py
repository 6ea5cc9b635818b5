"""Per-subject persistence of chat sessions.

The store owns the persisted form of every subject's history. It caps the
number of sessions on every write and, when the backend refuses a write for
lack of space, degrades by dropping the oldest sessions until the rest fit.
"""

import logging

from pydantic import ValidationError

from ..config import MAX_HISTORY_ITEMS, STORAGE_KEY_PREFIX
from ..errors import StorageError, StorageQuotaError
from .base import KeyValueStorage
from .models import ChatSession, dump_history, parse_history, sort_sessions

logger = logging.getLogger(__name__)


class SessionStore:
    """Quota-aware store for subject histories.

    Usage:
        store = SessionStore(create_storage_backend("sqlite", path="history.db"))
        sessions = await store.load("physics")
        persisted = await store.save("physics", sessions)
    """

    def __init__(self, storage: KeyValueStorage, max_sessions: int = MAX_HISTORY_ITEMS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._storage = storage
        self._max_sessions = max_sessions

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    @staticmethod
    def storage_key(subject_id: str) -> str:
        """Storage key holding the history of ``subject_id``."""
        return f"{STORAGE_KEY_PREFIX}{subject_id}"

    async def load(self, subject_id: str) -> list[ChatSession]:
        """Load the persisted history for a subject, newest first.

        Missing or corrupt data yields an empty list; corrupt data is logged
        and discarded.
        """
        try:
            raw = await self._storage.get_item(self.storage_key(subject_id))
        except StorageError:
            logger.exception("Failed to read chat history for subject %r", subject_id)
            return []

        if raw is None:
            return []

        try:
            sessions = parse_history(raw)
        except ValidationError as e:
            logger.error(
                "Discarding corrupt chat history for subject %r: %s",
                subject_id, e.errors(include_url=False)[:1],
            )
            return []

        return sort_sessions(sessions)[: self._max_sessions]

    async def save(
        self, subject_id: str, history: list[ChatSession]
    ) -> list[ChatSession] | None:
        """Persist a subject history, degrading under quota pressure.

        Sessions are written newest first and capped at ``max_sessions``.
        If the backend raises ``StorageQuotaError`` the oldest session is
        dropped and the write retried, down to the single newest session.
        Any other storage error aborts without retrying.

        Args:
            subject_id: Subject whose history is written
            history: Sessions to persist, in any order

        Returns:
            The sessions actually persisted, newest first, or None if the
            write failed and storage was left unchanged.
        """
        key = self.storage_key(subject_id)
        ordered = sort_sessions(history)

        if len(ordered) > self._max_sessions:
            logger.info(
                "Evicting %d oldest chat(s) for subject %r to stay within %d sessions",
                len(ordered) - self._max_sessions, subject_id, self._max_sessions,
            )
            ordered = ordered[: self._max_sessions]

        if not ordered:
            try:
                await self._storage.set_item(key, dump_history([]))
            except StorageError:
                logger.exception("An error occurred while saving chat history for %r", subject_id)
                return None
            return []

        for dropped in range(len(ordered)):
            candidate = ordered[: len(ordered) - dropped]
            try:
                await self._storage.set_item(key, dump_history(candidate))
            except StorageQuotaError:
                if dropped == 0:
                    logger.warning(
                        "Storage quota exceeded for subject %r. Attempting to clear old chats...",
                        subject_id,
                    )
                continue
            except StorageError:
                logger.exception("An error occurred while saving chat history for %r", subject_id)
                return None

            if dropped > 0:
                logger.info(
                    "Storage was full. Cleared %d oldest chat(s) to make space.", dropped
                )
            return candidate

        logger.error(
            "Could not save chat history for %r. Even the most recent chat is too "
            "large for the remaining storage space.",
            subject_id,
        )
        return None

    async def clear(self, subject_id: str) -> None:
        """Delete all persisted sessions for a subject."""
        await self._storage.remove_item(self.storage_key(subject_id))
