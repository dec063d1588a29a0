"""
Construction of the provider clients that ship with the service.
"""

from typing import Optional

from lifesync.core.clock import Clock
from lifesync.core.eduplanr import EduPlanrClient
from lifesync.core.external_api import ProviderClient
from lifesync.core.google_calendar import GoogleCalendarClient


def build_provider_clients(clock: Optional[Clock] = None) -> dict[str, ProviderClient]:
    """Return a client per provider key."""
    clients: list[ProviderClient] = [
        EduPlanrClient(clock=clock),
        GoogleCalendarClient(clock=clock),
    ]
    return {client.provider: client for client in clients}


async def close_provider_clients(clients: dict[str, ProviderClient]) -> None:
    for client in clients.values():
        await client.aclose()
