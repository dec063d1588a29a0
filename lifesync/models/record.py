"""
Local task / calendar event records, imported or user-created.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base
from lifesync.models.types import JSONType

LOCAL_SOURCE = "local"


class LocalRecord(Base):
    """A task or calendar event in the local store.

    Imported records use the deterministic id ``{provider}-{category}-{externalId}``
    and carry ``source=<provider>``. User-created records use ``source="local"``
    and are pushed only when ``push_eligible`` is set.
    """

    __tablename__ = "local_records"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)  # task, calendarEvent
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    source: Mapped[str] = mapped_column(String(50), default=LOCAL_SOURCE)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    fields: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    push_eligible: Mapped[bool] = mapped_column(Boolean, default=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_record_source", "user_id", "source"),
    )
