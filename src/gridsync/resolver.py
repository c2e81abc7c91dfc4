"""Signed URL resolution.

Turns a document identifier, storage reference or possibly-stale signed URL
into a URL that currently works:

1. Mock upload URLs fail immediately, without any request.
2. A cached URL for the storage reference (derived from the input, or
   remembered for the document id) is probed (HEAD).
3. The supplied URL itself is probed; a working one is cached.
4. On 401/403/404 the backend is asked for a fresh URL, once.
5. The fresh URL is cached when the backend asks for it and probed once more.

Every step is recorded in an attempt log that is logged and attached to
resolver errors.
"""

from __future__ import annotations

import asyncio
import re
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from gridsync.exceptions import (
    AuthenticationRequiredError,
    MockDataUnavailableError,
    NetworkError,
    RefreshExhaustedError,
)
from gridsync.model import (
    Attempt,
    AttemptType,
    Resolution,
    SignedURL,
    StorageReference,
)
from gridsync.transport import APIError, Transport, TransportError
from gridsync.url_cache import URLCache

MOCK_SCHEME = "mock://"
DEFAULT_MOCK_HOSTS = ("storage.example.com",)

# Probe statuses that mean "this URL expired or lost its grant"
REFRESHABLE_STATUSES = frozenset({401, 403, 404})

STORAGE_PREFIX = "documents/"
_STORAGE_PATH_PATTERN = re.compile(r"documents/[^?#]+")

TokenSource = Callable[[], str | None]


class ResolveState(str, Enum):
    TRY_CACHE = "TryCache"
    TRY_ORIGINAL = "TryOriginal"
    NEED_REFRESH = "NeedRefresh"
    REFRESHING = "Refreshing"
    RESOLVED = "Resolved"
    FAILED = "Failed"


@dataclass(frozen=True)
class DocumentLocator:
    """What a caller handed to the resolver, split into its usable parts."""

    raw: str
    url: str | None = None
    storage_ref: StorageReference | None = None
    document_id: str | None = None

    @property
    def has_http_url(self) -> bool:
        return bool(self.url) and self.url.lower().startswith(("http://", "https://"))


def derive_storage_ref(url: str) -> StorageReference | None:
    """Guess the storage reference behind a signed URL.

    Handles Firebase-style ``/o/<percent-encoded path>`` URLs and plain
    URLs whose path contains ``documents/...``.
    """
    path = urllib.parse.urlsplit(url).path
    if "/o/" in path:
        candidate = urllib.parse.unquote(path.split("/o/", 1)[1])
        if candidate:
            return candidate
    match = _STORAGE_PATH_PATTERN.search(urllib.parse.unquote(path))
    return match.group(0) if match else None


def parse_locator(value: str, document_id: str | None = None) -> DocumentLocator:
    """Classify a resolver input as a URL, a storage reference or a bare id."""
    value = value.strip()
    if "://" in value:
        return DocumentLocator(
            raw=value,
            url=value,
            storage_ref=derive_storage_ref(value),
            document_id=document_id,
        )
    if value.startswith(STORAGE_PREFIX):
        return DocumentLocator(raw=value, storage_ref=value, document_id=document_id)
    return DocumentLocator(raw=value, document_id=document_id or value)


def is_mock_url(value: str, mock_hosts: tuple[str, ...] = DEFAULT_MOCK_HOSTS) -> bool:
    """True for URLs produced by a simulated upload."""
    lowered = value.strip().lower()
    if lowered.startswith(MOCK_SCHEME):
        return True
    return any(host in lowered for host in mock_hosts)


class SignedUrlResolver:
    """Resolves documents to working signed URLs, caching what works.

    Args:
        transport: Storage and backend access.
        cache: Cache of last-known-working URLs.
        token_provider: Returns the bearer token for refresh calls, or None.
        timeout: Default time budget in seconds for one resolution
            (None = unbounded).
        mock_hosts: Hosts whose URLs are known to be simulated.
    """

    def __init__(
        self,
        transport: Transport,
        cache: URLCache,
        token_provider: TokenSource,
        *,
        timeout: float | None = None,
        mock_hosts: tuple[str, ...] = DEFAULT_MOCK_HOSTS,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._token_provider = token_provider
        self._timeout = timeout
        self._mock_hosts = mock_hosts

    @property
    def cache(self) -> URLCache:
        return self._cache

    async def resolve(
        self,
        document_id_or_url: str,
        *,
        document_id: str | None = None,
        timeout: float | None = None,
    ) -> SignedURL:
        """Return a working signed URL for a document.

        Raises:
            MockDataUnavailableError: The input is a simulated-upload URL
            AuthenticationRequiredError: A refresh was needed but no token was
                available, or the backend rejected it
            RefreshExhaustedError: The refreshed URL did not work either
            NetworkError: Storage or backend unreachable, or time budget spent
        """
        resolution = await self.resolve_detailed(
            document_id_or_url, document_id=document_id, timeout=timeout
        )
        return resolution.signed_url

    async def resolve_detailed(
        self,
        document_id_or_url: str,
        *,
        document_id: str | None = None,
        timeout: float | None = None,
    ) -> Resolution:
        """Like :meth:`resolve`, also returning the source and attempt log."""
        if is_mock_url(document_id_or_url, self._mock_hosts):
            logger.warning("Mock URL detected: {}", document_id_or_url)
            raise MockDataUnavailableError(
                "This file was uploaded in mock mode and cannot be viewed. "
                "Upload a real file instead."
            )

        locator = parse_locator(document_id_or_url, document_id)
        attempts: list[Attempt] = []
        budget = timeout if timeout is not None else self._timeout

        try:
            if budget is None:
                return await self._resolve(locator, attempts)
            return await asyncio.wait_for(self._resolve(locator, attempts), budget)
        except TimeoutError as e:
            logger.warning("Resolution gave up after {}s: {}", budget, _describe(attempts))
            raise NetworkError(
                f"Timed out after {budget} seconds resolving a download URL",
                attempts=attempts,
            ) from e

    async def _resolve(
        self, locator: DocumentLocator, attempts: list[Attempt]
    ) -> Resolution:
        storage_ref = locator.storage_ref
        if not storage_ref and locator.document_id:
            # Learned from an earlier refresh of the same document
            storage_ref = self._cache.ref_for(locator.document_id)

        # TryCache
        self._enter(ResolveState.TRY_CACHE, locator)
        if storage_ref:
            cached = self._cache.get(storage_ref)
            if cached is not None:
                if await self._check(cached.url, "cached", attempts):
                    return self._resolved(cached, "cached", storage_ref, attempts)
                self._cache.invalidate(storage_ref)

        # TryOriginal
        self._enter(ResolveState.TRY_ORIGINAL, locator)
        if locator.url and locator.has_http_url:
            status = await self._probe(locator.url, "original", attempts)
            if status is not None and _is_success(status):
                signed = self._remember(storage_ref, locator.url)
                return self._resolved(signed, "original", storage_ref, attempts)
            if status is None:
                self._enter(ResolveState.FAILED, locator)
                raise NetworkError(
                    "Could not reach storage to check the download URL",
                    attempts=attempts,
                )
            if status not in REFRESHABLE_STATUSES:
                self._enter(ResolveState.FAILED, locator)
                raise NetworkError(
                    f"Storage answered {status} for the download URL",
                    status_code=status,
                    attempts=attempts,
                )
        elif locator.url:
            attempts.append(
                Attempt(type="original", success=False, error="Invalid URL scheme")
            )
            logger.warning("Invalid URL scheme in original URL: {}", locator.url)

        # NeedRefresh
        self._enter(ResolveState.NEED_REFRESH, locator)
        token = self._token_provider()
        if not token:
            self._enter(ResolveState.FAILED, locator)
            raise AuthenticationRequiredError(
                "Authentication required. Sign in again and reload the document.",
                attempts=attempts,
            )

        # Refreshing
        self._enter(ResolveState.REFRESHING, locator)
        try:
            refreshed = await self._transport.request_download_url(
                token,
                document_id=locator.document_id,
                url=locator.url,
                file_path=storage_ref,
            )
        except APIError as e:
            attempts.append(
                Attempt(
                    type="refresh-request",
                    success=False,
                    status=e.status_code,
                    error=str(e),
                )
            )
            self._enter(ResolveState.FAILED, locator)
            if e.status_code == 401:
                raise AuthenticationRequiredError(
                    "The backend rejected the authentication token",
                    status_code=e.status_code,
                    attempts=attempts,
                ) from e
            raise RefreshExhaustedError(
                f"URL expired and refresh failed: {e}",
                status_code=e.status_code,
                attempts=attempts,
            ) from e
        except TransportError as e:
            attempts.append(Attempt(type="refresh-request", success=False, error=str(e)))
            self._enter(ResolveState.FAILED, locator)
            raise NetworkError(
                f"Could not reach the backend to refresh the URL: {e}",
                attempts=attempts,
            ) from e

        attempts.append(Attempt(type="refresh-request", success=True))
        logger.info("Received fresh URL from server")

        cache_ref = refreshed.storage_ref or storage_ref
        should_cache = False
        if refreshed.should_cache is True and cache_ref is not None:
            should_cache = True
            signed = self._remember(cache_ref, refreshed.url)
            if locator.document_id:
                self._cache.link(locator.document_id, cache_ref)
        else:
            signed = SignedURL(url=refreshed.url)

        if await self._check(refreshed.url, "refreshed-url", attempts):
            return self._resolved(signed, "refreshed-url", cache_ref, attempts)

        if should_cache and cache_ref:
            self._cache.invalidate(cache_ref)
        self._enter(ResolveState.FAILED, locator)
        last = attempts[-1]
        raise RefreshExhaustedError(
            "Still unable to access the file after refreshing its URL",
            status_code=last.status,
            attempts=attempts,
        )

    async def _probe(
        self, url: str, attempt_type: AttemptType, attempts: list[Attempt]
    ) -> int | None:
        """Probe a URL, record the attempt, and return the status (None on error)."""
        try:
            status = await self._transport.probe(url)
        except TransportError as e:
            logger.warning("Error checking {} URL: {}", attempt_type, e)
            attempts.append(Attempt(type=attempt_type, success=False, error=str(e)))
            return None

        success = _is_success(status)
        if success:
            logger.debug("{} URL is live", attempt_type)
            attempts.append(Attempt(type=attempt_type, success=True))
        else:
            logger.info("{} URL failed with status {}", attempt_type, status)
            attempts.append(Attempt(type=attempt_type, success=False, status=status))
        return status

    async def _check(
        self, url: str, attempt_type: AttemptType, attempts: list[Attempt]
    ) -> bool:
        status = await self._probe(url, attempt_type, attempts)
        return status is not None and _is_success(status)

    def _remember(self, storage_ref: StorageReference | None, url: str) -> SignedURL:
        """Cache a working URL when there is a reference to key it by."""
        if not storage_ref:
            return SignedURL(url=url)
        entry = self._cache.put(storage_ref, url)
        return SignedURL(url=url, expires_at=entry.cached_at + self._cache.ttl_seconds)

    def _resolved(
        self,
        signed: SignedURL,
        source: AttemptType,
        storage_ref: StorageReference | None,
        attempts: list[Attempt],
    ) -> Resolution:
        logger.debug("Resolved via {} after {}", source, _describe(attempts))
        return Resolution(
            signed_url=signed,
            source=source,
            storage_ref=storage_ref,
            attempts=tuple(attempts),
        )

    @staticmethod
    def _enter(state: ResolveState, locator: DocumentLocator) -> None:
        logger.trace("{} -> {}", locator.raw, state.value)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _describe(attempts: list[Attempt]) -> str:
    return ", ".join(
        f"{a.type}={'ok' if a.success else (a.status or a.error)}" for a in attempts
    ) or "no attempts"
