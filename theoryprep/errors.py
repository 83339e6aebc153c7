"""Exception taxonomy for the theory practice core."""


class TheoryError(Exception):
    """Base class. `message` is safe to show to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TheoryError):
    """A session, session question, topic, question or option is missing."""


class EmptyPoolError(TheoryError):
    """No questions matched the requested filter or mode."""


class NoMistakesError(EmptyPoolError):
    """Mistakes-only practice was requested but nothing was answered wrong."""

    def __init__(self, message: str = "No mistake questions found."):
        super().__init__(message)


class StorageError(TheoryError):
    """Local persistence failed. Retryable; user answers are never dropped on it."""


class RemoteSyncError(TheoryError):
    """Remote push failed with an error that is not a known 'backend not provisioned' case."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


# Signatures of a deployment where the remote tables were never created.
IGNORABLE_SYNC_MARKERS = ("does not exist", "relation", "invalid input syntax")


def error_message(error: BaseException) -> str:
    """Best-effort message extraction (postgrest APIError keeps it in .message)."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)


def is_ignorable_sync_error(error: BaseException) -> bool:
    if isinstance(error, RemoteSyncError) and error.cause is not None:
        return is_ignorable_sync_error(error.cause)
    normalized = error_message(error).lower()
    if not normalized:
        return False
    return any(marker in normalized for marker in IGNORABLE_SYNC_MARKERS)
