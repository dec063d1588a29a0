"""
Pydantic schemas for API requests and responses.
"""

from lifesync.schemas.integration import (
    ConnectRequest,
    Credentials,
    DisconnectRequest,
    IntegrationStatus,
    IntegrationStatusView,
    Platform,
    ProviderDescription,
    SyncMode,
)
from lifesync.schemas.sync import (
    AcceptedRecord,
    ChangeKind,
    INBOX_ENTITY_TYPES,
    InboxItemCreate,
    InboxItemView,
    InboxStatus,
    LocalChangeKind,
    LocalChangeRequest,
    PushRecord,
    PushResult,
    RecordCreate,
    RecordUpdate,
    RecordView,
    RejectedRecord,
    RemoteRecord,
    RemoteState,
    SyncDirection,
    SyncJobView,
    SyncLogView,
    SyncOutcome,
    SyncPhase,
    SyncReport,
    SyncRequest,
    SyncRunResponse,
    SchedulerResponse,
    SyncTrigger,
    WebhookPayload,
    WebhookResponse,
)

__all__ = [
    "ConnectRequest",
    "Credentials",
    "DisconnectRequest",
    "IntegrationStatus",
    "IntegrationStatusView",
    "Platform",
    "ProviderDescription",
    "SyncMode",
    "AcceptedRecord",
    "ChangeKind",
    "INBOX_ENTITY_TYPES",
    "InboxItemCreate",
    "InboxItemView",
    "InboxStatus",
    "LocalChangeKind",
    "LocalChangeRequest",
    "PushRecord",
    "PushResult",
    "RecordCreate",
    "RecordUpdate",
    "RecordView",
    "RejectedRecord",
    "RemoteRecord",
    "RemoteState",
    "SyncDirection",
    "SyncJobView",
    "SyncLogView",
    "SyncOutcome",
    "SyncPhase",
    "SyncReport",
    "SyncRequest",
    "SyncRunResponse",
    "SchedulerResponse",
    "SyncTrigger",
    "WebhookPayload",
    "WebhookResponse",
]
