"""Tests for DocumentClient open/save."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from gridsync.client import CSV_MIME_TYPE, XLSX_MIME_TYPE, DocumentClient, OpenedDocument
from gridsync.exceptions import (
    ApplyEditsFailedError,
    AuthenticationRequiredError,
    MockDataUnavailableError,
    NetworkError,
    ParseError,
)
from gridsync.model import GridCellEdit, RefreshedURL, SheetCellEdit
from gridsync.transport import APIError, TransportError
from gridsync.url_cache import URLCache
from tests.fakes import FakeTransport

REF = "documents/user1/1700000000_people.csv"
STALE_URL = f"https://storage.googleapis.com/bucket/{REF}?sig=old"
CACHED_URL = f"https://storage.googleapis.com/bucket/{REF}?sig=cached"
FRESH_URL = f"https://storage.googleapis.com/bucket/{REF}?sig=fresh"
CSV_BODY = b"Name,Age\nAlice,30\nBob,25\n"


@pytest.fixture
def client(
    transport: FakeTransport, cache: URLCache, token: list[str | None]
) -> DocumentClient:
    return DocumentClient(transport, cache, lambda: token[0], save_timeout=1.0)


class TestOpen:
    async def test_open_csv(self, client: DocumentClient, transport: FakeTransport) -> None:
        transport.statuses[STALE_URL] = 200
        transport.bodies[STALE_URL] = CSV_BODY

        opened = await client.open(STALE_URL, document_id="doc-1")

        assert opened.document_id == "doc-1"
        assert opened.mime_type == CSV_MIME_TYPE
        assert opened.url.url == STALE_URL
        assert opened.baseline.flat
        assert opened.baseline.values() == [["Name", "Age"], ["Alice", "30"], ["Bob", "25"]]
        assert transport.fetches == [STALE_URL]

    async def test_open_workbook_after_refresh(
        self,
        client: DocumentClient,
        transport: FakeTransport,
        make_xlsx: Callable[[dict[str, list[list[object]]]], bytes],
    ) -> None:
        ref = "documents/user1/1700000000_budget.xlsx"
        fresh = f"https://storage.googleapis.com/bucket/{ref}?sig=fresh"
        transport.statuses[fresh] = 200
        transport.bodies[fresh] = make_xlsx({"Budget": [["Rent", 1200]]})
        transport.refresh_responses.append(RefreshedURL(url=fresh, storage_ref=ref))

        opened = await client.open("abc123", mime_type=XLSX_MIME_TYPE)

        assert opened.document_id == "abc123"
        assert opened.mime_type == XLSX_MIME_TYPE
        assert opened.baseline.values("Budget") == [["Rent", 1200]]

    async def test_download_failure_resolves_again(
        self, client: DocumentClient, transport: FakeTransport, cache: URLCache
    ) -> None:
        cache.put(REF, CACHED_URL)
        transport.statuses[CACHED_URL] = 200
        transport.fetch_statuses[CACHED_URL] = 403
        transport.statuses[STALE_URL] = 403
        transport.statuses[FRESH_URL] = 200
        transport.bodies[FRESH_URL] = CSV_BODY
        transport.refresh_responses.append(RefreshedURL(url=FRESH_URL, should_cache=True))

        opened = await client.open(STALE_URL, document_id="doc-1")

        assert opened.url.url == FRESH_URL
        assert transport.fetches == [CACHED_URL, FRESH_URL]
        assert len(transport.refresh_calls) == 1
        assert cache.get(REF).url == FRESH_URL  # type: ignore[union-attr]

    async def test_download_server_error(
        self, client: DocumentClient, transport: FakeTransport
    ) -> None:
        transport.statuses[STALE_URL] = 200
        transport.fetch_statuses[STALE_URL] = 500

        with pytest.raises(NetworkError) as exc_info:
            await client.open(STALE_URL)

        assert exc_info.value.status_code == 500

    async def test_mock_url(self, client: DocumentClient, transport: FakeTransport) -> None:
        with pytest.raises(MockDataUnavailableError):
            await client.open("mock://documents/user1/a.csv")

        assert transport.network_calls == 0

    async def test_unparseable_body(
        self, client: DocumentClient, transport: FakeTransport
    ) -> None:
        url = "https://storage.googleapis.com/bucket/documents/u/1_a.xlsx?sig=1"
        transport.statuses[url] = 200
        transport.bodies[url] = b"not a workbook"

        with pytest.raises(ParseError) as exc_info:
            await client.open(url)

        assert exc_info.value.source == "1_a.xlsx"


class TestSave:
    async def _open_csv(
        self, client: DocumentClient, transport: FakeTransport
    ) -> OpenedDocument:
        transport.statuses[STALE_URL] = 200
        transport.bodies[STALE_URL] = CSV_BODY
        return await client.open(STALE_URL, document_id="doc-1")

    async def test_save_sends_minimal_edits(
        self, client: DocumentClient, transport: FakeTransport
    ) -> None:
        opened = await self._open_csv(client, transport)
        transport.apply_response = {"success": True, "changesApplied": 1}
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][1][1].value = "99"

        result = await client.save(opened, edited)

        assert result.success
        assert result.changes_applied == 1
        assert result.edits == [GridCellEdit(row=1, column=1, value="99")]
        assert result.response == {"success": True, "changesApplied": 1}
        assert transport.applied == [
            {
                "token": "test-token",
                "document_id": "doc-1",
                "mime_type": "text/csv",
                "edits": [{"row": 1, "column": 1, "value": "99"}],
            }
        ]

    async def test_baseline_advances_after_save(
        self, client: DocumentClient, transport: FakeTransport
    ) -> None:
        opened = await self._open_csv(client, transport)
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][1][1].value = "99"
        await client.save(opened, edited)

        result = await client.save(opened, edited)

        assert result.changes_applied == 0
        assert len(transport.applied) == 1
        assert opened.baseline.values()[1] == ["Alice", "99"]

    async def test_no_changes_makes_no_request(
        self,
        client: DocumentClient,
        transport: FakeTransport,
        token: list[str | None],
    ) -> None:
        opened = await self._open_csv(client, transport)
        token[0] = None

        result = await client.save(opened, opened.edit_buffer())

        assert result.success
        assert result.message == "No changes to save"
        assert transport.applied == []

    async def test_workbook_edits(
        self,
        client: DocumentClient,
        transport: FakeTransport,
        make_xlsx: Callable[[dict[str, list[list[object]]]], bytes],
    ) -> None:
        url = "https://storage.googleapis.com/bucket/documents/u/1_b.xlsx?sig=1"
        transport.statuses[url] = 200
        transport.bodies[url] = make_xlsx({"Sheet1": [["Food", 30], ["Rent", 1200]]})
        opened = await client.open(url, document_id="doc-2")
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][0][1].value = 31

        result = await client.save(opened, edited)

        assert result.edits == [SheetCellEdit(sheet="Sheet1", cell="B1", value=31)]
        assert transport.applied[0]["mime_type"] == XLSX_MIME_TYPE

    async def test_no_token(
        self,
        client: DocumentClient,
        transport: FakeTransport,
        token: list[str | None],
    ) -> None:
        opened = await self._open_csv(client, transport)
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][0][0].value = "Full name"
        token[0] = None

        with pytest.raises(AuthenticationRequiredError):
            await client.save(opened, edited)

        assert transport.applied == []

    @pytest.mark.parametrize(
        ("failure", "status"),
        [
            (APIError("API error (403): Forbidden", status_code=403), 403),
            (TransportError("Network error: refused"), None),
        ],
    )
    async def test_backend_failure_keeps_baseline(
        self,
        client: DocumentClient,
        transport: FakeTransport,
        failure: Exception,
        status: int | None,
    ) -> None:
        opened = await self._open_csv(client, transport)
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][2][0].value = "Robert"
        transport.apply_response = failure

        with pytest.raises(ApplyEditsFailedError) as exc_info:
            await client.save(opened, edited)

        assert exc_info.value.status_code == status
        assert opened.baseline.values()[2] == ["Bob", "25"]

    async def test_save_timeout(self, transport: FakeTransport, cache: URLCache) -> None:
        client = DocumentClient(transport, cache, lambda: "t", save_timeout=0.01)
        opened = await self._open_csv(client, transport)
        edited = opened.edit_buffer()
        edited.sheets["Sheet1"][2][0].value = "Robert"
        transport.apply_delay = 5.0

        with pytest.raises(ApplyEditsFailedError, match="timed out"):
            await client.save(opened, edited)

    async def test_close(self, client: DocumentClient, transport: FakeTransport) -> None:
        await client.close()

        assert transport.closed
