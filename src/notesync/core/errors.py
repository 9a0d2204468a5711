"""Error taxonomy for notesync.

Provider and transport failures are mapped onto these classes at the
HTTP boundary, so the sync layer never inspects provider-native error
payloads. Conflicts are not errors and are returned as values.
"""

from __future__ import annotations


class NoteSyncError(Exception):
    """Base exception for all notesync errors."""


class APIError(NoteSyncError):
    """Base exception for remote API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        provider_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider_code = provider_code
        self.retry_after = retry_after


class TransportError(APIError):
    """Network failure, timeout or retryable status after retries ran out."""


class AuthenticationError(APIError):
    """Request rejected as unauthenticated and a token refresh did not help."""


class QuotaExceededError(APIError):
    """Remote storage is full."""


class NotFoundError(APIError):
    """Remote resource not found."""


class AuthorizationError(NoteSyncError):
    """User cancelled or denied the consent step."""


class TokenRefreshError(NoteSyncError):
    """Refresh token was rejected; stored tokens have been cleared."""


class NotAuthenticatedError(NoteSyncError):
    """No tokens are stored for the account."""


class ValidationError(NoteSyncError):
    """Note, page or request data is malformed."""


class SyncError(NoteSyncError):
    """Base exception for sync orchestration errors."""


class UploadError(SyncError):
    """Upload did not produce the expected remote object."""


class DownloadError(SyncError):
    """Downloaded content could not be applied locally."""
