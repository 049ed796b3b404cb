"""Error taxonomy shared by the parsers, the Xtream client and the sync orchestrator."""
from __future__ import annotations


class TvSyncError(Exception):
    """Base class for every error raised by tvsync."""

    error_kind = "Error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def __str__(self) -> str:
        return self.message


class TransportError(TvSyncError):
    """Network failure, timeout or non-success HTTP status. Retryable by the caller."""

    error_kind = "FetchError"
    retryable = True

    def __init__(self, message: str = "", status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class AuthenticationFailed(TvSyncError):
    """Provider rejected the credentials (or answered with something unusable)."""

    error_kind = "AuthenticationFailed"


class MalformedInput(TvSyncError):
    """Document-level parse failure (not valid XML, not an M3U playlist, ...)."""

    error_kind = "MalformedInput"


class PersistenceFailure(TvSyncError):
    """The store could not apply a changeset. Always fatal; the store rolls back."""

    error_kind = "PersistenceFailure"


class DecryptionFailed(TvSyncError):
    error_kind = "DecryptionFailed"


class SyncCancelled(TvSyncError):
    error_kind = "Cancelled"


class SyncInProgress(TvSyncError):
    """Raised when a sync of the same source is already running and the caller won't wait."""

    error_kind = "SyncInProgress"
