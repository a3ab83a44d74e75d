from __future__ import annotations

import httpx
import pytest

from bookscan.core import fetcher
from bookscan.core.fetcher import LookupResult
from bookscan.core.models import BookMetadata
from bookscan.core.storage import MemoryBookStore, SqliteBookStore

class StaticProvider:
    """Provider double that returns a canned result and counts calls."""

    def __init__(self, name: str, result: LookupResult | Exception) -> None:
        self.name = name
        self.result = result
        self.calls: list[str] = []

    async def lookup(self, client, isbn: str) -> LookupResult:
        self.calls.append(isbn)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _sample_metadata(**overrides) -> BookMetadata:
    values = dict(
        title="Data Structures",
        author="Jane Doe, John Roe",
        publisher="Acme Press",
        cover_url="https://example.org/cover.jpg",
        categories=["Computers / Programming"],
        genre="Technology",
        source="stub",
    )
    values.update(overrides)
    return BookMetadata(**values)


@pytest.fixture
def sample_metadata():
    return _sample_metadata


@pytest.fixture
def make_provider():
    return StaticProvider


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield MemoryBookStore()
    else:
        s = SqliteBookStore(tmp_path / "books.db")
        yield s
        s.close()


@pytest.fixture(autouse=True)
def no_ol_throttle(monkeypatch):
    monkeypatch.setattr(fetcher, "_OL_MIN_INTERVAL", 0.0)


@pytest.fixture
def mock_client():
    """Build an httpx.AsyncClient whose requests go to a handler function."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
