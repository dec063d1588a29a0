"""
Sync services.
"""

from lifesync.services.registry import IntegrationRegistry, SUPPORTED_INTEGRATIONS
from lifesync.services.integration_service import IntegrationService
from lifesync.services.record_store import RecordStore
from lifesync.services.inbox import SyncInbox
from lifesync.services.ledger import SyncJobLedger
from lifesync.services.reconciliation import ReconciliationEngine
from lifesync.services.watcher import ChangeTriggerWatcher
from lifesync.services.scheduler import SyncScheduler
from lifesync.services.runtime import SyncRuntime

__all__ = [
    "IntegrationRegistry",
    "SUPPORTED_INTEGRATIONS",
    "IntegrationService",
    "RecordStore",
    "SyncInbox",
    "SyncJobLedger",
    "ReconciliationEngine",
    "ChangeTriggerWatcher",
    "SyncScheduler",
    "SyncRuntime",
]
