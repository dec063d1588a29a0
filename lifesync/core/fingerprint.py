"""
Deterministic ids and content fingerprints for synced records.
"""

import hashlib
import json
from typing import Any


def local_record_id(provider: str, category: str, external_id: str) -> str:
    """Local id of a record pulled from ``provider``.

    The same remote id always maps to the same local id, so re-pulling
    updates rather than duplicates.
    """
    return f"{provider}-{category}-{external_id}"


def content_hash(fields: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of ``fields``."""
    payload = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
