"""Mail database client.

Records message lifecycle events with the mail-status service.
"""

import json
import logging
from typing import Any

import httpx

from .config import MailDBConfig

logger = logging.getLogger(__name__)


class MailDBError(Exception):
    """Raised when the mail database cannot be reached or rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.body = body


class MailDBClient:
    """Client for the mail database HTTP API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retries: int = 3,
    ) -> None:
        """Initialize the mail database client.

        Args:
            base_url: Base URL of the mail database, e.g. http://127.0.0.1:8081/db
            token: Bearer token sent with every request
            client: HTTP client to use. When omitted, one is created with a
                    transport that retries failed connections.
            timeout: Request timeout in seconds (only for an owned client)
            retries: Connection retries (only for an owned client)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            transport=httpx.AsyncHTTPTransport(retries=retries),
        )

    @classmethod
    def from_config(cls, config: MailDBConfig) -> "MailDBClient":
        return cls(
            config.base_url,
            config.token or "",
            timeout=config.timeout,
            retries=config.retries,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "MailDBClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _url(self, action: str, domain: str, message_id: str) -> str:
        return f"{self.base_url}/domain/{domain}/{action}/{message_id}"

    async def _request(self, method: str, url: str, content: str) -> None:
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = await self.client.request(method, url, content=content, headers=headers)
        except httpx.HTTPError as e:
            raise MailDBError(f"maildb request {method} {url} failed: {e}", url=url) from e

        if response.status_code != 200:
            raise MailDBError(
                f"maildb returned code {response.status_code}: {response.text}",
                url=url,
                status_code=response.status_code,
                body=response.text,
            )

    async def new(self, domain: str, message_id: str) -> None:
        """Register a new message.

        Raises:
            MailDBError: If the request fails or is not answered with 200.
        """
        logger.debug(f"mailDB: create new email {message_id}")
        await self._request("POST", self._url("new", domain, message_id), "")

    async def update_status(self, domain: str, message_id: str, status: int) -> None:
        """Update the lifecycle status of a message."""
        logger.debug(f"mailDB: update status {message_id} {int(status)}")
        body = json.dumps({"status": int(status)})
        await self._request("PUT", self._url("update", domain, message_id), body)

    async def set_field(self, domain: str, message_id: str, field: str, value: str) -> None:
        """Set an arbitrary string field on a message."""
        logger.debug(f"mailDB: update {field} {message_id} {value}")
        body = json.dumps({field: value})
        await self._request("PUT", self._url("update", domain, message_id), body)
