"""
Google Calendar API v3 client.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from lifesync.config import get_settings
from lifesync.core.errors import ExternalAPIError, NotFound, RemoteRejected, RemoteUnavailable
from lifesync.core.external_api import HTTPProviderClient
from lifesync.schemas.integration import Credentials
from lifesync.schemas.sync import (
    AcceptedRecord,
    PushRecord,
    PushResult,
    RejectedRecord,
    RemoteRecord,
    RemoteState,
)

logger = logging.getLogger(__name__)

PROVIDER = "googleCalendar"

EVENTS = "events"


def _event_time(value: Optional[dict[str, Any]]) -> tuple[Optional[str], bool]:
    """Return (iso time, is_all_day) from a Google start/end object."""
    if not value:
        return None, False
    if value.get("dateTime"):
        return value["dateTime"], False
    if value.get("date"):
        return value["date"], True
    return None, False


def event_to_record(item: dict[str, Any]) -> RemoteRecord:
    """Translate a Google Calendar event into the local event shape."""
    start, all_day = _event_time(item.get("start"))
    end, _ = _event_time(item.get("end"))
    return RemoteRecord(
        external_id=item["id"],
        entity_type="calendarEvent",
        category="event",
        deleted=item.get("status") == "cancelled",
        fields={
            "title": item.get("summary") or "Untitled Event",
            "description": item.get("description") or "",
            "start_time": start,
            "end_time": end,
            "all_day": all_day,
            "location": item.get("location") or "",
            "attendees": [
                {
                    "email": a.get("email"),
                    "name": a.get("displayName") or a.get("email"),
                    "status": a.get("responseStatus") or "pending",
                }
                for a in item.get("attendees", [])
            ],
            "category": "meeting",
        },
    )


def record_to_event(record: PushRecord) -> dict[str, Any]:
    """Build a Google Calendar event body from a local event."""
    fields = record.fields
    time_key = "date" if fields.get("all_day") else "dateTime"
    body: dict[str, Any] = {
        "summary": fields.get("title"),
        "start": {time_key: fields.get("start_time")},
        "end": {time_key: fields.get("end_time")},
    }
    if fields.get("description"):
        body["description"] = fields["description"]
    if fields.get("location"):
        body["location"] = fields["location"]
    return body


class GoogleCalendarClient(HTTPProviderClient):
    """Reads and writes the user's primary Google calendar."""

    provider = PROVIDER

    def __init__(self, base_url: Optional[str] = None, window_days: Optional[int] = None, **kwargs):
        settings = get_settings()
        super().__init__(base_url or settings.google_calendar_api_base, **kwargs)
        self.window_days = window_days or settings.calendar_window_days

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        token = credentials.require_access_token(self.clock.now())
        return {"Authorization": f"Bearer {token}"}

    async def fetch_remote_state(
        self,
        credentials: Credentials,
        collection: str,
        since: Optional[datetime] = None,
    ) -> RemoteState:
        """List primary-calendar events inside the sync window."""
        if collection != EVENTS:
            raise ExternalAPIError(f"Google Calendar has no collection '{collection}'")

        headers = self._auth_headers(credentials)
        now = self.clock.now()
        params: dict[str, Any] = {
            "timeMin": (now - timedelta(days=self.window_days)).isoformat() + "Z",
            "timeMax": (now + timedelta(days=self.window_days)).isoformat() + "Z",
            "singleEvents": "true",
            "showDeleted": "true",
            "maxResults": 250,
        }
        if since:
            params["updatedMin"] = since.isoformat() + "Z"

        records: list[RemoteRecord] = []
        page_token: Optional[str] = None
        while True:
            if page_token:
                params["pageToken"] = page_token
            data = await self._request(
                "GET",
                "/calendars/primary/events",
                params=params,
                headers=headers,
            )
            records.extend(event_to_record(item) for item in data.get("items", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Google Calendar: fetched {len(records)} events")
        return RemoteState(records=records, as_of=now)

    async def push_local_changes(
        self,
        credentials: Credentials,
        records: list[PushRecord],
    ) -> PushResult:
        """Create, update or delete events one by one.

        A rejected event does not stop the batch; an unavailable provider does,
        leaving the remaining events for the next pass. Deleting an event
        Google no longer has counts as accepted.
        """
        headers = self._auth_headers(credentials)
        result = PushResult()

        for record in records:
            if record.deleted:
                try:
                    await self._request(
                        "DELETE",
                        f"/calendars/primary/events/{record.remote_id}",
                        headers=headers,
                    )
                except NotFound:
                    pass  # already gone
                except RemoteRejected as e:
                    # 410 Gone: deleted earlier on Google's side
                    if e.status_code != 410:
                        result.rejected.append(
                            RejectedRecord(local_id=record.local_id, error=e.message)
                        )
                        continue
                except RemoteUnavailable as e:
                    result.unavailable_error = e.describe()
                    break
                result.accepted.append(
                    AcceptedRecord(local_id=record.local_id, remote_id=record.remote_id)
                )
                continue

            body = record_to_event(record)
            try:
                if record.remote_id:
                    data = await self._request(
                        "PATCH",
                        f"/calendars/primary/events/{record.remote_id}",
                        json=body,
                        headers=headers,
                    )
                else:
                    data = await self._request(
                        "POST",
                        "/calendars/primary/events",
                        json=body,
                        headers=headers,
                    )
            except RemoteRejected as e:
                result.rejected.append(RejectedRecord(local_id=record.local_id, error=e.message))
                continue
            except RemoteUnavailable as e:
                result.unavailable_error = e.describe()
                break

            result.accepted.append(
                AcceptedRecord(local_id=record.local_id, remote_id=data["id"])
            )

        return result
