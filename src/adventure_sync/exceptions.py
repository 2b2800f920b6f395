"""Exception hierarchy for the adventure_sync library."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all adventure_sync errors."""

    pass


class ConfigError(SyncError):
    """Raised when required configuration is missing or invalid."""

    pass


class AuthenticationError(SyncError):
    """Raised when sign-in fails or no user is signed in."""

    pass


class RemoteError(SyncError):
    """Raised when the backend rejects a call.

    The status_code attribute holds the HTTP status of the rejected request,
    or None when the failure did not come from an HTTP response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """Raised when the backend cannot be reached at all."""

    pass


class LocalStoreError(SyncError):
    """Raised when the local blob database fails."""

    pass


class BlobNotFoundError(LocalStoreError):
    """Raised when an upload's photo bytes are missing from local storage."""

    pass


class UploadNotFoundError(SyncError):
    """Raised when a queue item does not exist or belongs to someone else."""

    pass


class InvalidTransitionError(SyncError):
    """Raised when a queue item cannot move to the requested status."""

    pass


class RetryLimitError(InvalidTransitionError):
    """Raised when a failed upload has used up its retries."""

    pass
