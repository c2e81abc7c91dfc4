"""DocumentClient - Main API for gridsync.

Provides ``open`` and ``save`` for the resolve-fetch-edit-save workflow.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from loguru import logger

from gridsync.diff import apply_edits, diff
from gridsync.exceptions import (
    ApplyEditsFailedError,
    AuthenticationRequiredError,
    NetworkError,
)
from gridsync.ingestion import parse_document
from gridsync.logging import document_context
from gridsync.model import CellEdit, SignedURL, SpreadsheetDocument
from gridsync.resolver import REFRESHABLE_STATUSES, SignedUrlResolver, TokenSource
from gridsync.transport import APIError, Transport, TransportError
from gridsync.url_cache import URLCache

DEFAULT_SAVE_TIMEOUT = 30.0

CSV_MIME_TYPE = "text/csv"
XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass
class OpenedDocument:
    """A document loaded for editing.

    ``baseline`` mirrors what the backend holds. Edit a copy of it and pass
    the copy to :meth:`DocumentClient.save`.
    """

    document_id: str
    mime_type: str
    url: SignedURL
    baseline: SpreadsheetDocument

    def edit_buffer(self) -> SpreadsheetDocument:
        return self.baseline.copy()


@dataclass
class SaveResult:
    """Result of a save operation."""

    success: bool
    changes_applied: int
    message: str
    document_id: str
    edits: list[CellEdit]
    response: dict[str, Any] | None = None


class DocumentClient:
    """Opens spreadsheet documents behind signed URLs and saves edits back.

    Example:
        >>> transport = HttpTransport.from_settings(settings)
        >>> client = DocumentClient(transport, URLCache.from_settings(settings), TokenProvider(settings=settings))
        >>> opened = await client.open("abc123", mime_type="text/csv")
        >>> edited = opened.edit_buffer()
        >>> edited.sheets["Sheet1"][1][1].value = "99"
        >>> result = await client.save(opened, edited)
    """

    def __init__(
        self,
        transport: Transport,
        cache: URLCache,
        token_provider: TokenSource,
        *,
        resolve_timeout: float | None = None,
        save_timeout: float = DEFAULT_SAVE_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._token_provider = token_provider
        self._save_timeout = save_timeout
        self._resolver = SignedUrlResolver(
            transport, cache, token_provider, timeout=resolve_timeout
        )

    @property
    def resolver(self) -> SignedUrlResolver:
        return self._resolver

    async def open(
        self,
        document_id_or_url: str,
        *,
        document_id: str | None = None,
        mime_type: str | None = None,
        file_name: str | None = None,
    ) -> OpenedDocument:
        """Resolve, download and parse a document.

        Args:
            document_id_or_url: Document id, storage reference or signed URL
            document_id: Document id when the first argument is a URL
            mime_type: MIME type of the stored object, if known
            file_name: File name of the stored object, used when mime_type is
                missing or ambiguous

        Raises:
            ResolverError: If no working URL could be obtained
            ParseError: If the body is not a supported spreadsheet
        """
        doc_id = document_id or document_id_or_url
        with document_context(doc_id):
            resolution = await self._resolver.resolve_detailed(
                document_id_or_url, document_id=document_id
            )
            try:
                data = await self._transport.fetch(resolution.signed_url.url)
            except APIError as e:
                if e.status_code not in REFRESHABLE_STATUSES:
                    raise NetworkError(
                        f"Download failed with status {e.status_code}",
                        status_code=e.status_code,
                        attempts=list(resolution.attempts),
                    ) from e
                # The URL died between probe and download; resolve once more
                logger.info("Download returned {}, resolving again", e.status_code)
                if resolution.storage_ref:
                    self._resolver.cache.invalidate(resolution.storage_ref)
                resolution = await self._resolver.resolve_detailed(
                    document_id_or_url, document_id=document_id
                )
                data = await self._fetch_once(resolution.signed_url.url)
            except TransportError as e:
                raise NetworkError(
                    f"Could not download the document: {e}",
                    attempts=list(resolution.attempts),
                ) from e

            baseline = parse_document(
                data,
                mime_type=mime_type,
                file_name=file_name or _name_from_locator(document_id_or_url),
            )
            logger.info(
                "Opened document with {} sheet(s) via {} URL",
                len(baseline.sheet_names),
                resolution.source,
            )

        return OpenedDocument(
            document_id=doc_id,
            mime_type=mime_type or (CSV_MIME_TYPE if baseline.flat else XLSX_MIME_TYPE),
            url=resolution.signed_url,
            baseline=baseline,
        )

    async def save(
        self, opened: OpenedDocument, edited: SpreadsheetDocument
    ) -> SaveResult:
        """Diff ``edited`` against the baseline and apply the edits remotely.

        On success the baseline is advanced so the next save only sends
        newer changes.

        Raises:
            AuthenticationRequiredError: If no token is available
            ApplyEditsFailedError: If the backend rejects the edits or the save
                runs past its timeout
        """
        with document_context(opened.document_id):
            edits = diff(opened.baseline, edited)
            if not edits:
                logger.info("No changes to save")
                return SaveResult(
                    success=True,
                    changes_applied=0,
                    message="No changes to save",
                    document_id=opened.document_id,
                    edits=[],
                )

            token = self._token_provider()
            if not token:
                raise AuthenticationRequiredError(
                    "Authentication required. Sign in again before saving."
                )

            logger.info("Saving {} cell edit(s)", len(edits))
            try:
                response = await asyncio.wait_for(
                    self._transport.apply_edits(
                        token,
                        document_id=opened.document_id,
                        mime_type=opened.mime_type,
                        edits=edits,
                    ),
                    self._save_timeout,
                )
            except TimeoutError as e:
                raise ApplyEditsFailedError(
                    f"Saving timed out after {self._save_timeout} seconds"
                ) from e
            except APIError as e:
                raise ApplyEditsFailedError(str(e), status_code=e.status_code) from e
            except TransportError as e:
                raise ApplyEditsFailedError(f"Could not reach the backend: {e}") from e

            opened.baseline = apply_edits(opened.baseline, edits)

        return SaveResult(
            success=True,
            changes_applied=len(edits),
            message=f"Applied {len(edits)} change(s)",
            document_id=opened.document_id,
            edits=edits,
            response=response,
        )

    async def close(self) -> None:
        await self._transport.close()

    async def _fetch_once(self, url: str) -> bytes:
        try:
            return await self._transport.fetch(url)
        except APIError as e:
            raise NetworkError(
                f"Download failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except TransportError as e:
            raise NetworkError(f"Could not download the document: {e}") from e


def _name_from_locator(value: str) -> str:
    """Last path segment of a URL or storage reference, without the query."""
    return value.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
