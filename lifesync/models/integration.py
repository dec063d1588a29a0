"""
Integration configuration model (one per user and provider).
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from lifesync.database import Base
from lifesync.models.types import JSONType, new_id


class IntegrationConfig(Base):
    """Connection state and sync settings of one provider for one user."""

    __tablename__ = "integration_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    connected: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_mode: Mapped[str] = mapped_column(
        String(20),
        default="add-only",
    )  # add-only, pull, push, two-way
    status: Mapped[str] = mapped_column(
        String(20),
        default="idle",
    )  # idle, syncing, degraded, error
    platform: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    account_label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Opaque token bundle, cleared on disconnect
    credentials: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    last_synced: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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
            "idx_integration_unique",
            "user_id",
            "provider",
            unique=True,
        ),
    )
