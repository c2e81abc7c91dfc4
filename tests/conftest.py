"""Shared test fixtures for gridsync."""

from __future__ import annotations

import io
from collections.abc import Callable

import pytest
from openpyxl import Workbook

from gridsync.resolver import SignedUrlResolver
from gridsync.url_cache import MemoryStore, URLCache
from tests.fakes import FakeClock, FakeTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(store: MemoryStore, clock: FakeClock) -> URLCache:
    return URLCache(store, clock=clock)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def token() -> list[str | None]:
    """Mutable holder so tests can take the token away."""
    return ["test-token"]


@pytest.fixture
def resolver(
    transport: FakeTransport, cache: URLCache, token: list[str | None]
) -> SignedUrlResolver:
    return SignedUrlResolver(transport, cache, lambda: token[0])


@pytest.fixture
def make_xlsx() -> Callable[[dict[str, list[list[object]]]], bytes]:
    """Build an xlsx workbook in memory from ``{sheet: rows}``."""

    def _make(sheets: dict[str, list[list[object]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for name, rows in sheets.items():
            sheet = workbook.create_sheet(title=name)
            for row in rows:
                sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make
