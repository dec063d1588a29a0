"""
SQLAlchemy models for the sync service.
"""

from lifesync.models.integration import IntegrationConfig
from lifesync.models.record import LOCAL_SOURCE, LocalRecord
from lifesync.models.sync import EntityMapping, SyncInboxItem, SyncJob, SyncLog

__all__ = [
    "IntegrationConfig",
    "SyncJob",
    "SyncLog",
    "EntityMapping",
    "SyncInboxItem",
    "LocalRecord",
    "LOCAL_SOURCE",
]
