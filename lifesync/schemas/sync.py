"""
Sync-related Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    LOCAL_CHANGE = "local_change"


class SyncOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncDirection(str, Enum):
    BIDIRECTIONAL = "bidirectional"
    PULL = "pull"
    PUSH = "push"

    @property
    def pulls(self) -> bool:
        return self is not SyncDirection.PUSH

    @property
    def pushes(self) -> bool:
        return self is not SyncDirection.PULL


class SyncPhase(str, Enum):
    IDLE = "idle"
    PULLING = "pulling"
    DIFFING = "diffing"
    APPLYING = "applying"
    PUSHING = "pushing"
    FAILED = "failed"


class ChangeKind(str, Enum):
    """Classification of a pulled record against its mapping."""

    NEW = "new"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    DELETED = "deleted"


class LocalChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


# ============== Provider wire shapes ==============


class RemoteRecord(BaseModel):
    """A provider document translated to the internal task/event shape."""

    external_id: str
    entity_type: str
    category: str
    fields: dict[str, Any] = Field(default_factory=dict)
    deleted: bool = False
    # Provider-computed digest; a record whose checksum matches the mapped one is unchanged
    checksum: Optional[str] = None


class RemoteState(BaseModel):
    records: list[RemoteRecord] = Field(default_factory=list)
    as_of: datetime


class PushRecord(BaseModel):
    local_id: str
    entity_type: str
    category: Optional[str] = None
    remote_id: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    # Remove ``remote_id`` at the provider instead of writing it
    deleted: bool = False


class AcceptedRecord(BaseModel):
    local_id: str
    remote_id: str


class RejectedRecord(BaseModel):
    local_id: str
    error: str


class PushResult(BaseModel):
    """Outcome of a batch push.

    Records in neither list were not attempted because the provider became
    unavailable; they stay eligible for the next pass.
    """

    accepted: list[AcceptedRecord] = Field(default_factory=list)
    rejected: list[RejectedRecord] = Field(default_factory=list)
    unavailable_error: Optional[str] = None


# ============== Reports and views ==============


class SyncReport(BaseModel):
    """Result of one reconciliation run."""

    job_id: str
    user_id: str
    provider: str
    trigger: SyncTrigger
    direction: SyncDirection
    outcome: SyncOutcome = SyncOutcome.PENDING
    pulled_count: int = 0
    pushed_count: int = 0
    unchanged_count: int = 0
    skipped_deletes: int = 0
    remote_deletes: int = 0
    inbox_processed: int = 0
    inbox_failed: int = 0
    collections_synced: list[str] = Field(default_factory=list)
    collection_errors: dict[str, str] = Field(default_factory=dict)
    # Earliest server time covered by this run's pulls; the next incremental cursor
    pulled_as_of: Optional[datetime] = None
    push_error: Optional[str] = None
    push_skipped: bool = False
    rejected: list[RejectedRecord] = Field(default_factory=list)
    error: Optional[str] = None

    def summary(self) -> str:
        parts = [
            f"{self.pulled_count} pulled",
            f"{self.pushed_count} pushed",
            f"{self.unchanged_count} unchanged",
        ]
        if self.remote_deletes:
            parts.append(f"{self.remote_deletes} deleted remotely")
        if self.inbox_processed or self.inbox_failed:
            parts.append(f"{self.inbox_processed} inbox processed")
        if self.inbox_failed:
            parts.append(f"{self.inbox_failed} inbox failed")
        if self.skipped_deletes:
            parts.append(f"{self.skipped_deletes} deletes ignored")
        if self.rejected:
            parts.append(f"{len(self.rejected)} rejected")
        if self.collection_errors:
            parts.append("failed: " + ", ".join(sorted(self.collection_errors)))
        if self.push_error:
            parts.append("push unavailable")
        return " | ".join(parts)


class SyncRequest(BaseModel):
    """Request to run a reconciliation now."""

    user_id: str
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL


class SyncRunResponse(BaseModel):
    """Result of a manual sync request."""

    ran: bool
    report: Optional[SyncReport] = None
    detail: Optional[str] = None


class SchedulerResponse(BaseModel):
    user_id: str
    running: bool
    changed: bool


class SyncJobView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    provider: str
    trigger: SyncTrigger
    direction: SyncDirection
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcome: SyncOutcome
    pulled_count: int = 0
    pushed_count: int = 0
    summary: Optional[str] = None
    error_message: Optional[str] = None


class SyncLogView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    job_id: Optional[str] = None
    level: str
    message: str
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class LocalChangeRequest(BaseModel):
    """Notification that local data relevant to a provider changed."""

    user_id: str
    provider: Optional[str] = Field(
        default=None,
        description="Limit to one provider; defaults to every push-capable connection",
    )
    change_kind: LocalChangeKind = LocalChangeKind.UPDATED


class WebhookPayload(BaseModel):
    """Payload a provider sends when remote data changed."""

    user_id: str
    event_type: str = "updated"
    data: dict[str, Any] = Field(default_factory=dict)


class WebhookResponse(BaseModel):
    received: bool = True
    scheduled: bool
    error: Optional[str] = None


# ============== Sync inbox ==============


class InboxStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# Entity types an inbox payload may carry, with their default category
INBOX_ENTITY_TYPES: dict[str, str] = {
    "task": "task",
    "calendarEvent": "event",
    "transaction": "finance",
    "wellnessSnapshot": "wellness",
}


class InboxItemCreate(BaseModel):
    """A provider payload pushed to us instead of pulled over REST."""

    user_id: str
    entity_type: str = Field(description="task, calendarEvent, transaction or wellnessSnapshot")
    payload: dict[str, Any] = Field(default_factory=dict)
    external_id: Optional[str] = None
    category: Optional[str] = None
    checksum: Optional[str] = None
    source: str = "manual"
    deleted: bool = False


class InboxItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    provider: str
    entity_type: str
    external_id: Optional[str] = None
    status: InboxStatus
    error: Optional[str] = None
    job_id: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


# ============== Local records ==============


class RecordCreate(BaseModel):
    user_id: str
    entity_type: str = Field(description="task or calendarEvent")
    category: str = "personal"
    title: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    push_eligible: bool = False


class RecordUpdate(BaseModel):
    user_id: str
    title: Optional[str] = None
    fields: Optional[dict[str, Any]] = None
    push_eligible: Optional[bool] = None


class RecordView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    entity_type: str
    category: str
    source: str
    external_id: Optional[str] = None
    title: Optional[str] = None
    fields: dict[str, Any]
    push_eligible: bool
    last_error: Optional[str] = None
    updated_at: datetime
