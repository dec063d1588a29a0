"""
Sync ledger models: jobs, logs, entity mappings and the sync inbox.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base
from lifesync.models.types import JSONType, new_id


class SyncJob(Base):
    """One sync attempt. Finalized once, never deleted."""

    __tablename__ = "integration_sync_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )  # manual, scheduled, webhook, local_change
    direction: Mapped[str] = mapped_column(String(20), default="bidirectional")

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    outcome: Mapped[str] = mapped_column(
        String(20),
        default="pending",
    )  # pending, success, partial, failed

    pulled_count: Mapped[int] = mapped_column(Integer, default=0)
    pushed_count: Mapped[int] = mapped_column(Integer, default=0)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # At most one pending job per user + provider
        Index(
            "idx_sync_job_one_pending",
            "user_id",
            "provider",
            unique=True,
            postgresql_where=text("outcome = 'pending'"),
            sqlite_where=text("outcome = 'pending'"),
        ),
        Index("idx_sync_job_started", "user_id", "provider", "started_at"),
    )


class SyncLog(Base):
    """User-visible audit entry written by the ledger."""

    __tablename__ = "integration_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    level: Mapped[str] = mapped_column(String(10), default="info")  # info, warning, error
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class EntityMapping(Base):
    """Links a local record to its remote counterpart for one provider."""

    __tablename__ = "integration_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )  # task, calendarEvent, transaction, wellnessSnapshot
    local_id: Mapped[str] = mapped_column(String(255), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(255), nullable=False)
    last_synced_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Checksum the provider sent with the record, when it sends one
    remote_checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Tombstone: the local record was deleted; kept so pulls do not re-import it
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delete_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index(
            "idx_mapping_local_unique",
            "user_id",
            "provider",
            "local_id",
            unique=True,
        ),
        Index("idx_mapping_remote", "user_id", "provider", "entity_type", "remote_id"),
    )


class SyncInboxItem(Base):
    """A provider payload delivered to us, imported by the next sync job."""

    __tablename__ = "integration_sync_inbox"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )  # task, calendarEvent, transaction, wellnessSnapshot
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source: Mapped[str] = mapped_column(String(50), default="manual")
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
    )  # pending, processed, failed
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_inbox_pending", "user_id", "provider", "status", "created_at"),
    )
