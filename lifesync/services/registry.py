"""
Static catalog of supported integrations.
"""

from typing import Optional

from lifesync.core.errors import UnknownProvider, UnsupportedSyncMode
from lifesync.schemas.integration import Platform, ProviderDescription, SyncMode

_ALL_PLATFORMS = [Platform.WEB, Platform.IOS, Platform.ANDROID]
_READ_ONLY = [SyncMode.ADD_ONLY, SyncMode.PULL]
_ANY_MODE = [SyncMode.ADD_ONLY, SyncMode.PULL, SyncMode.PUSH, SyncMode.TWO_WAY]

SUPPORTED_INTEGRATIONS: dict[str, ProviderDescription] = {
    p.key: p
    for p in [
        ProviderDescription(
            key="eduplanr",
            name="EduPlanr",
            category="education",
            default_sync_mode=SyncMode.TWO_WAY,
            supported_modes=_ANY_MODE,
            platforms=[Platform.WEB],
            collections=["sessions", "tasks"],
            push_entity_types=["task", "calendarEvent"],
            has_client=True,
        ),
        ProviderDescription(
            key="googleCalendar",
            name="Google Calendar",
            category="calendar",
            default_sync_mode=SyncMode.ADD_ONLY,
            supported_modes=_ANY_MODE,
            platforms=_ALL_PLATFORMS,
            collections=["events"],
            push_entity_types=["calendarEvent"],
            has_client=True,
            push_deletes=True,
        ),
        ProviderDescription(
            key="appleCalendar",
            name="Apple Calendar",
            category="calendar",
            default_sync_mode=SyncMode.ADD_ONLY,
            supported_modes=[SyncMode.ADD_ONLY],
            platforms=[Platform.IOS],
            collections=["events"],
        ),
        ProviderDescription(
            key="googleContacts",
            name="Google Contacts",
            category="contacts",
            default_sync_mode=SyncMode.PULL,
            supported_modes=_READ_ONLY,
            platforms=[Platform.WEB],
            collections=["contacts"],
        ),
        ProviderDescription(
            key="todoist",
            name="Todoist",
            category="tasks",
            default_sync_mode=SyncMode.TWO_WAY,
            supported_modes=_ANY_MODE,
            platforms=_ALL_PLATFORMS,
            collections=["tasks"],
            push_entity_types=["task"],
        ),
        ProviderDescription(
            key="notion",
            name="Notion",
            category="tasks",
            default_sync_mode=SyncMode.PULL,
            supported_modes=_READ_ONLY,
            platforms=[Platform.WEB],
            collections=["tasks"],
        ),
        ProviderDescription(
            key="fitbit",
            name="Fitbit",
            category="health",
            default_sync_mode=SyncMode.PULL,
            supported_modes=_READ_ONLY,
            platforms=_ALL_PLATFORMS,
            collections=["activity", "sleep"],
        ),
        ProviderDescription(
            key="googleFit",
            name="Google Fit",
            category="health",
            default_sync_mode=SyncMode.PULL,
            supported_modes=_READ_ONLY,
            platforms=[Platform.ANDROID, Platform.WEB],
            collections=["activity", "sleep"],
        ),
        ProviderDescription(
            key="appleHealth",
            name="Apple Health",
            category="health",
            default_sync_mode=SyncMode.ADD_ONLY,
            supported_modes=_READ_ONLY,
            platforms=[Platform.IOS],
            collections=["activity", "sleep"],
        ),
        ProviderDescription(
            key="healthConnect",
            name="Health Connect",
            category="health",
            default_sync_mode=SyncMode.ADD_ONLY,
            supported_modes=_READ_ONLY,
            platforms=[Platform.ANDROID],
            collections=["activity", "sleep"],
        ),
        ProviderDescription(
            key="plaid",
            name="Plaid",
            category="finance",
            default_sync_mode=SyncMode.PULL,
            supported_modes=_READ_ONLY,
            platforms=_ALL_PLATFORMS,
            collections=["transactions"],
        ),
    ]
}


class IntegrationRegistry:
    """Pure lookup over the provider catalog."""

    def __init__(self, catalog: dict[str, ProviderDescription] = SUPPORTED_INTEGRATIONS):
        self._catalog = catalog

    def describe(self, provider: str) -> ProviderDescription:
        try:
            return self._catalog[provider]
        except KeyError:
            raise UnknownProvider(f"unknown provider '{provider}'") from None

    def list_providers(self) -> list[ProviderDescription]:
        return list(self._catalog.values())

    def resolve_mode(self, provider: str, requested: Optional[SyncMode] = None) -> SyncMode:
        """Return the mode to store for a new connection, validating ``requested``."""
        info = self.describe(provider)
        mode = requested or info.default_sync_mode
        if mode not in info.supported_modes:
            raise UnsupportedSyncMode(
                f"{info.name} does not support '{mode.value}' sync "
                f"(supported: {', '.join(m.value for m in info.supported_modes)})"
            )
        return mode

    def can_push(self, provider: str, mode: SyncMode) -> bool:
        info = self.describe(provider)
        return mode.supports_push and info.has_client and bool(info.push_entity_types)

    def can_push_deletes(self, provider: str, mode: SyncMode) -> bool:
        return self.can_push(provider, mode) and self.describe(provider).push_deletes

    def has_client(self, provider: str) -> bool:
        info = self._catalog.get(provider)
        return info is not None and info.has_client
