"""
EduPlanr partner-app client.

EduPlanr exposes study sessions and academic tasks per account. The account
is matched by email and a user-generated sync token rather than OAuth.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from lifesync.config import get_settings
from lifesync.core.clock import to_naive_utc, utcnow
from lifesync.core.errors import AuthExpired, ExternalAPIError
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

PROVIDER = "eduplanr"

SESSIONS = "sessions"
TASKS = "tasks"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def session_to_record(doc: dict[str, Any]) -> RemoteRecord:
    """Translate an EduPlanr study session into a calendar event."""
    return RemoteRecord(
        external_id=str(doc["id"]),
        entity_type="calendarEvent",
        category="session",
        deleted=bool(doc.get("deleted", False)),
        fields={
            "title": doc.get("title") or "Study Session",
            "description": doc.get("notes") or "",
            "start_time": doc.get("startTime"),
            "end_time": doc.get("endTime"),
            "all_day": False,
            "category": "learning",
            "energy_required": "medium",
            "is_flexible": False,
        },
    )


def task_to_record(doc: dict[str, Any]) -> RemoteRecord:
    """Translate an EduPlanr assignment into a task."""
    priority = doc.get("priority")
    return RemoteRecord(
        external_id=str(doc["id"]),
        entity_type="task",
        category="task",
        deleted=bool(doc.get("deleted", False)),
        fields={
            "title": doc.get("title") or "",
            "description": doc.get("description") or "",
            "status": "done" if doc.get("status") == "completed" else "todo",
            "priority": priority if priority in ("critical", "high") else "medium",
            "energy_level": "medium",
            "due_date": doc.get("dueDate"),
            "category": "academic",
        },
    )


def record_to_document(record: PushRecord) -> dict[str, Any]:
    """Translate a local record back into the EduPlanr document shape."""
    fields = record.fields
    if record.entity_type == "calendarEvent":
        doc = {
            "type": "session",
            "title": fields.get("title"),
            "notes": fields.get("description", ""),
            "startTime": fields.get("start_time"),
            "endTime": fields.get("end_time"),
        }
    else:
        doc = {
            "type": "task",
            "title": fields.get("title"),
            "description": fields.get("description", ""),
            "status": "completed" if fields.get("status") == "done" else "pending",
            "priority": fields.get("priority", "medium"),
            "dueDate": fields.get("due_date"),
        }
    doc["localId"] = record.local_id
    if record.remote_id:
        doc["id"] = record.remote_id
    return doc


class EduPlanrClient(HTTPProviderClient):
    """REST client for the EduPlanr sync endpoints."""

    provider = PROVIDER

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or get_settings().eduplanr_api_base, **kwargs)

    _translators = {
        SESSIONS: session_to_record,
        TASKS: task_to_record,
    }

    def _account(self, credentials: Credentials) -> dict[str, str]:
        if not credentials.email or not credentials.sync_token:
            raise AuthExpired(
                "EduPlanr is not properly configured. Missing email or sync token."
            )
        return {"email": credentials.email, "syncToken": credentials.sync_token}

    async def fetch_remote_state(
        self,
        credentials: Credentials,
        collection: str,
        since: Optional[datetime] = None,
    ) -> RemoteState:
        """Fetch study sessions or tasks for the matched EduPlanr account."""
        translate = self._translators.get(collection)
        if translate is None:
            raise ExternalAPIError(f"EduPlanr has no collection '{collection}'")

        payload: dict[str, Any] = {**self._account(credentials), "collection": collection}
        if since:
            payload["since"] = since.isoformat()

        data = await self._request("POST", "/eduplanr/sync", json=payload)
        body = data.get("data", {})
        records = [translate(doc) for doc in body.get("items", [])]
        as_of = _parse_time(data.get("asOf")) or utcnow()

        logger.debug(f"EduPlanr {collection}: fetched {len(records)} records")
        return RemoteState(records=records, as_of=as_of)

    async def push_local_changes(
        self,
        credentials: Credentials,
        records: list[PushRecord],
    ) -> PushResult:
        """Send local sessions and tasks to EduPlanr in one batch."""
        if not records:
            return PushResult()

        payload = {
            **self._account(credentials),
            "records": [record_to_document(r) for r in records],
        }
        data = await self._request("POST", "/eduplanr/push", json=payload)

        return PushResult(
            accepted=[
                AcceptedRecord(local_id=item["localId"], remote_id=str(item["id"]))
                for item in data.get("accepted", [])
            ],
            rejected=[
                RejectedRecord(local_id=item["localId"], error=item.get("error", "rejected"))
                for item in data.get("rejected", [])
            ],
        )
