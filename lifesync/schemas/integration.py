"""
Integration-related Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lifesync.core.clock import to_naive_utc
from lifesync.core.errors import AuthExpired


class SyncMode(str, Enum):
    """Direction contract between the local store and a provider."""

    ADD_ONLY = "add-only"
    PULL = "pull"
    PUSH = "push"
    TWO_WAY = "two-way"

    @property
    def supports_pull(self) -> bool:
        return self is not SyncMode.PUSH

    @property
    def supports_push(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.TWO_WAY)

    @property
    def applies_deletes(self) -> bool:
        # add-only providers are append-only by contract
        return self in (SyncMode.PULL, SyncMode.TWO_WAY)


class IntegrationStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    DEGRADED = "degraded"
    ERROR = "error"


class Platform(str, Enum):
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class Credentials(BaseModel):
    """Opaque token bundle stored on the integration config."""

    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    # EduPlanr identifies the account by email + sync token
    email: Optional[str] = None
    sync_token: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def require_access_token(self, now: datetime) -> str:
        """Return the access token or raise ``AuthExpired``."""
        if not self.access_token:
            raise AuthExpired("no access token stored; reconnect the integration")
        if self.is_expired(now):
            raise AuthExpired("access token expired; reconnect the integration")
        return self.access_token


class ProviderDescription(BaseModel):
    """Static registry entry for a provider."""

    key: str
    name: str
    category: str
    default_sync_mode: SyncMode
    supported_modes: list[SyncMode]
    platforms: list[Platform]
    collections: list[str] = Field(default_factory=list)
    push_entity_types: list[str] = Field(default_factory=list)
    # Providers without a REST client only deliver data through the sync inbox
    has_client: bool = False
    # Local deletes of mapped records are sent to the provider
    push_deletes: bool = False


class ConnectRequest(BaseModel):
    """Request to connect a provider."""

    user_id: str
    credentials: Credentials
    sync_mode: Optional[SyncMode] = Field(
        default=None,
        description="Defaults to the provider's registry sync mode",
    )
    platform: Optional[Platform] = None
    account_label: Optional[str] = None


class DisconnectRequest(BaseModel):
    user_id: str


class IntegrationStatusView(BaseModel):
    """Read model shown to the user for one provider."""

    user_id: str
    provider: str
    connected: bool
    sync_enabled: bool
    sync_mode: SyncMode
    status: IntegrationStatus
    last_synced: Optional[datetime] = None
    last_error: Optional[str] = None
    pull_count: int = 0
    push_count: int = 0
    active_job_id: Optional[str] = None
