"""Initial schema: integration configs, sync ledger, mappings, local records and the sync inbox.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Integration configs table
    op.create_table(
        "integration_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("connected", sa.Boolean, server_default=sa.false()),
        sa.Column("sync_enabled", sa.Boolean, server_default=sa.false()),
        sa.Column("sync_mode", sa.String(20), server_default="add-only"),
        sa.Column("status", sa.String(20), server_default="idle"),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column("account_label", sa.String(255), nullable=True),
        sa.Column("credentials", postgresql.JSONB, nullable=True),
        sa.Column("last_synced", sa.DateTime, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_integration_unique", "integration_configs", ["user_id", "provider"], unique=True)

    # Sync jobs table
    op.create_table(
        "integration_sync_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("trigger", sa.String(20), nullable=False),
        sa.Column("direction", sa.String(20), server_default="bidirectional"),
        sa.Column("started_at", sa.DateTime, nullable=False),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("outcome", sa.String(20), server_default="pending"),
        sa.Column("pulled_count", sa.Integer, server_default="0"),
        sa.Column("pushed_count", sa.Integer, server_default="0"),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
    )
    op.create_index(
        "idx_sync_job_one_pending",
        "integration_sync_jobs",
        ["user_id", "provider"],
        unique=True,
        postgresql_where=sa.text("outcome = 'pending'"),
    )
    op.create_index("idx_sync_job_started", "integration_sync_jobs", ["user_id", "provider", "started_at"])

    # Sync logs table
    op.create_table(
        "integration_sync_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("job_id", sa.String(36), nullable=True),
        sa.Column("level", sa.String(10), server_default="info"),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # Entity mappings table
    op.create_table(
        "integration_mappings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("local_id", sa.String(255), nullable=False),
        sa.Column("remote_id", sa.String(255), nullable=False),
        sa.Column("last_synced_hash", sa.String(64), nullable=True),
        sa.Column("remote_checksum", sa.String(64), nullable=True),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("delete_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_mapping_local_unique", "integration_mappings", ["user_id", "provider", "local_id"], unique=True)
    op.create_index("idx_mapping_remote", "integration_mappings", ["user_id", "provider", "entity_type", "remote_id"])

    # Local records table
    op.create_table(
        "local_records",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("source", sa.String(50), server_default="local"),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("fields", postgresql.JSONB, server_default="{}"),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("push_eligible", sa.Boolean, server_default=sa.false()),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("rejected_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_record_source", "local_records", ["user_id", "source"])

    # Sync inbox table
    op.create_table(
        "integration_sync_inbox",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("payload", postgresql.JSONB, server_default="{}"),
        sa.Column("checksum", sa.String(64), nullable=True),
        sa.Column("source", sa.String(50), server_default="manual"),
        sa.Column("deleted", sa.Boolean, server_default=sa.false()),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("job_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("processed_at", sa.DateTime, nullable=True),
    )
    op.create_index(
        "idx_inbox_pending", "integration_sync_inbox", ["user_id", "provider", "status", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("integration_sync_inbox")
    op.drop_table("local_records")
    op.drop_table("integration_mappings")
    op.drop_table("integration_sync_logs")
    op.drop_table("integration_sync_jobs")
    op.drop_table("integration_configs")
