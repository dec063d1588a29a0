"""
Error taxonomy for provider calls and sync orchestration.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every sync failure surfaced to callers."""

    code = "sync_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def describe(self) -> str:
        """Short ``code: message`` form stored in ``lastError`` and job records."""
        return f"{self.code}: {self.message}"


class ExternalAPIError(SyncError):
    """Exception for remote provider API errors."""

    code = "external_api_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthExpired(ExternalAPIError):
    """Access token missing, expired or refused. The user must reconnect."""

    code = "auth_expired"


class RemoteUnavailable(ExternalAPIError):
    """5xx, transport failure or timeout. Retried on the next pass."""

    code = "remote_unavailable"
    retryable = True


class RemoteRejected(ExternalAPIError):
    """Data-level rejection (4xx validation)."""

    code = "remote_rejected"


class NotFound(ExternalAPIError):
    """Remote account, collection or record did not match anything."""

    code = "not_found"


class SyncTimeout(SyncError):
    """Job exceeded its wall-clock ceiling or was superseded as stale."""

    code = "timeout"


class AlreadyRunning(SyncError):
    """A pending job already exists for this user and provider."""

    code = "already_running"

    def __init__(self, user_id: str, provider: str, job_id: Optional[str] = None):
        super().__init__(
            f"sync for {provider} already running for user {user_id}"
            + (f" (job {job_id})" if job_id else "")
        )
        self.user_id = user_id
        self.provider = provider
        self.job_id = job_id


class IntegrationNotConnected(SyncError):
    """No connected, sync-enabled configuration for this user and provider."""

    code = "not_connected"


class UnknownProvider(SyncError, KeyError):
    """Provider key is not in the registry or has no client."""

    code = "unknown_provider"

    def __str__(self) -> str:
        return self.message


class UnsupportedSyncMode(SyncError):
    """Requested sync mode is not offered by the provider."""

    code = "unsupported_sync_mode"
