"""
Base client for remote provider REST APIs.

Every provider client exposes the same two operations:

- ``fetch_remote_state(credentials, collection, since)`` lists one remote
  collection, translated to ``RemoteRecord``s
- ``push_local_changes(credentials, records)`` sends a batch of local
  upserts and reports which were accepted or rejected

Clients never write to the local store.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lifesync.config import get_settings
from lifesync.core.clock import Clock, LoopClock
from lifesync.core.errors import (
    AuthExpired,
    ExternalAPIError,
    NotFound,
    RemoteRejected,
    RemoteUnavailable,
)
from lifesync.schemas.integration import Credentials
from lifesync.schemas.sync import PushRecord, PushResult, RemoteState

logger = logging.getLogger(__name__)


class ProviderClient(ABC):
    """Contract between the reconciliation engine and one remote provider."""

    provider: str

    @abstractmethod
    async def fetch_remote_state(
        self,
        credentials: Credentials,
        collection: str,
        since: Optional[datetime] = None,
    ) -> RemoteState:
        """List records of ``collection`` changed since ``since``."""

    @abstractmethod
    async def push_local_changes(
        self,
        credentials: Credentials,
        records: list[PushRecord],
    ) -> PushResult:
        """Send a batch of local upserts and, where supported, deletes."""

    async def aclose(self) -> None:
        """Release network resources."""


def raise_for_status(response: httpx.Response) -> None:
    """Map an HTTP error response onto the sync error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    detail = _error_detail(response)
    if status in (401, 403):
        raise AuthExpired(f"authorization refused: {detail}", status_code=status)
    if status == 404:
        raise NotFound(f"not found: {detail}", status_code=status)
    if status == 408 or status == 429 or status >= 500:
        raise RemoteUnavailable(f"provider unavailable ({status}): {detail}", status_code=status)
    raise RemoteRejected(f"request rejected ({status}): {detail}", status_code=status)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return response.text[:200]


class HTTPProviderClient(ProviderClient):
    """Provider client speaking JSON over HTTPS with httpx.

    Each request carries an explicit timeout. ``RemoteUnavailable`` failures
    are retried with exponential backoff; everything else is raised at once.
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ):
        settings = get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.retry_attempts = retry_attempts or settings.http_retry_attempts
        self.retry_backoff = (
            retry_backoff if retry_backoff is not None
            else settings.http_retry_backoff_seconds
        )
        self.clock = clock or LoopClock()
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "HTTPProviderClient":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def connect(self) -> None:
        """Create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            self._owns_client = True

    async def aclose(self) -> None:
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> Any:
        """Make HTTP request with retry logic."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=10),
            retry=retry_if_exception_type(RemoteUnavailable),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, endpoint, **kwargs)

    async def _send(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        if self._client is None:
            await self.connect()
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(f"request to {self.provider} timed out: {e}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailable(f"could not reach {self.provider}: {e}") from e

        raise_for_status(response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"{self.provider} returned invalid JSON",
                status_code=response.status_code,
            ) from e
