"""Transport layer for object storage and the document backend.

Defines the Transport protocol and its HTTP implementation:
- probe/fetch talk to object storage through signed URLs
- request_download_url mints a fresh signed URL for a document
- apply_edits submits a list of cell edits for a document
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import certifi
import httpx

from gridsync.model import CellEdit, RefreshedURL

if TYPE_CHECKING:
    from gridsync.config import Settings

DEFAULT_TIMEOUT = 60


class TransportError(Exception):
    """Base exception for transport errors (connection, DNS, timeouts)."""


class APIError(TransportError):
    """Raised when storage or the backend answers with an error status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class Transport(ABC):
    """Abstract base class for storage and backend access."""

    @abstractmethod
    async def probe(self, url: str) -> int:
        """Check a signed URL without downloading it.

        Returns:
            The HTTP status code of a HEAD request
        """
        ...

    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Download the object behind a signed URL."""
        ...

    @abstractmethod
    async def request_download_url(
        self,
        token: str,
        *,
        document_id: str | None = None,
        url: str | None = None,
        file_path: str | None = None,
    ) -> RefreshedURL:
        """Ask the backend for a fresh signed URL.

        Args:
            token: Bearer token for the backend
            document_id: Document identifier, when known
            url: The URL that stopped working, when there is one
            file_path: Storage reference of the object, when known

        Returns:
            RefreshedURL with the new URL and caching hints
        """
        ...

    @abstractmethod
    async def apply_edits(
        self,
        token: str,
        *,
        document_id: str,
        mime_type: str,
        edits: list[CellEdit],
    ) -> dict[str, Any]:
        """Submit cell edits for a document and return the backend response."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


class HttpTransport(Transport):
    """Production transport over HTTP.

    Handles authentication headers, SSL, and status-code mapping.
    """

    def __init__(
        self,
        download_url_endpoint: str,
        apply_edits_endpoint: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            download_url_endpoint: Full URL of the download-URL endpoint
            apply_edits_endpoint: Full URL of the apply-edits endpoint
            timeout: Request timeout in seconds
            client: Pre-built client (tests pass one with a mock transport)
        """
        self._download_url_endpoint = download_url_endpoint
        self._apply_edits_endpoint = apply_edits_endpoint
        if client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            client = httpx.AsyncClient(
                timeout=timeout,
                verify=ssl_context,
                follow_redirects=True,
            )
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpTransport:
        return cls(
            settings.download_url_endpoint,
            settings.apply_edits_endpoint,
            timeout=settings.http_timeout,
        )

    async def probe(self, url: str) -> int:
        """Send a HEAD request and return its status."""
        try:
            response = await self._client.head(url, headers={"Cache-Control": "no-cache"})
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e
        return response.status_code

    async def fetch(self, url: str) -> bytes:
        """Download an object body."""
        try:
            response = await self._client.get(url, headers={"Cache-Control": "no-cache"})
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e
        if not response.is_success:
            raise APIError(
                f"Download failed ({response.status_code})",
                status_code=response.status_code,
            )
        return response.content

    async def request_download_url(
        self,
        token: str,
        *,
        document_id: str | None = None,
        url: str | None = None,
        file_path: str | None = None,
    ) -> RefreshedURL:
        """POST to the download-URL endpoint."""
        body: dict[str, Any] = {}
        if document_id:
            body["documentId"] = document_id
        if url:
            body["url"] = url
        if file_path:
            body["filePath"] = file_path

        result = await self._post(self._download_url_endpoint, token, body)
        new_url = result.get("url")
        if not isinstance(new_url, str) or not new_url:
            raise APIError("Download-URL response did not contain a url", status_code=502)
        storage_ref = result.get("storageRef")
        should_cache = result.get("shouldCache")
        return RefreshedURL(
            url=new_url,
            should_cache=bool(should_cache) if should_cache is not None else None,
            storage_ref=storage_ref if isinstance(storage_ref, str) and storage_ref else None,
        )

    async def apply_edits(
        self,
        token: str,
        *,
        document_id: str,
        mime_type: str,
        edits: list[CellEdit],
    ) -> dict[str, Any]:
        """POST an edit list to the apply-edits endpoint."""
        body = {
            "documentId": document_id,
            "mimeType": mime_type,
            "edits": [edit.to_dict() for edit in edits],
        }
        return await self._post(self._apply_edits_endpoint, token, body)

    async def _post(self, url: str, token: str, body: dict[str, Any]) -> dict[str, Any]:
        """Make an authenticated JSON POST request."""
        try:
            response = await self._client.post(
                url,
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise APIError(_error_message(e.response), status_code=status) from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e

        if not response.content:
            return {}
        try:
            result = response.json()
        except ValueError as e:
            raise APIError(
                f"Invalid JSON in response: {e}", status_code=response.status_code
            ) from e
        return result if isinstance(result, dict) else {"result": result}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    """Pull the ``error`` field out of a failure body, falling back to text."""
    status = response.status_code
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return f"API error ({status}): {data['error']}"
    return f"API error ({status}): {response.text}"
