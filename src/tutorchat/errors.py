"""Exception taxonomy for tutorchat.

Generation and storage failures are recovered locally by the chat controller
and the session store. Only malformed-session and unknown-subject errors are
meant to reach callers.
"""


class TutorChatError(Exception):
    """Base class for all tutorchat errors."""


class GenerationError(TutorChatError):
    """The generation service failed: transport error, non-2xx response or malformed payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(TutorChatError):
    """A storage backend failed to read or write."""


class StorageQuotaError(StorageError):
    """A write was refused because it would exceed the storage quota."""


class MalformedSessionError(TutorChatError):
    """A session's message sequence does not allow the requested operation."""


class UnknownSubjectError(TutorChatError, KeyError):
    """No subject is registered under the given id."""

    def __init__(self, subject_id: str):
        super().__init__(f"Unknown subject: {subject_id}")
        self.subject_id = subject_id

    def __str__(self) -> str:
        return self.args[0]
