"""Resolve book metadata for an ISBN from external providers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from .config import settings
from .genres import classify
from .models import BookMetadata

log = structlog.get_logger()

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_URL = "https://openlibrary.org"
OPEN_LIBRARY_COVERS_URL = "https://covers.openlibrary.org/b/id"

# Open Library API compliance (https://openlibrary.org/developers/api)
# Identified requests get 3 req/s; unidentified get 1 req/s.
_OL_MIN_INTERVAL = 0.35  # seconds between Open Library requests


def _ol_user_agent(contact: str) -> str:
    return f"Bookscan/0.1.0 ({contact})" if contact else "Bookscan/0.1.0"


@dataclass(frozen=True)
class LookupResult:
    """Outcome of one provider attempt: metadata, or the reason it failed."""

    metadata: BookMetadata | None = None
    failure: str = ""

    @property
    def ok(self) -> bool:
        return self.metadata is not None

    @classmethod
    def found(cls, metadata: BookMetadata) -> LookupResult:
        return cls(metadata=metadata)

    @classmethod
    def failed(cls, reason: str) -> LookupResult:
        return cls(failure=reason)


class MetadataProvider(Protocol):
    name: str

    async def lookup(self, client: httpx.AsyncClient, isbn: str) -> LookupResult: ...


class GoogleBooksProvider:
    """Primary provider: Google Books volume search by ISBN."""

    name = "google_books"

    def __init__(self, api_key: str = "", timeout: float = 8.0) -> None:
        self.api_key = api_key
        self.timeout = timeout

    async def lookup(self, client: httpx.AsyncClient, isbn: str) -> LookupResult:
        params = {"q": f"isbn:{isbn}"}
        if self.api_key:
            params["key"] = self.api_key

        try:
            resp = await client.get(GOOGLE_BOOKS_URL, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            return LookupResult.failed(f"http error: {e}")
        except ValueError as e:
            return LookupResult.failed(f"bad json: {e}")

        items = data.get("items") or []
        if not items:
            return LookupResult.failed("no match")

        info = items[0].get("volumeInfo") or {}
        categories = list(info.get("categories") or [])

        thumbnail = (info.get("imageLinks") or {}).get("thumbnail")
        if thumbnail:
            thumbnail = thumbnail.replace("http:", "https:", 1)

        authors = info.get("authors") or []
        return LookupResult.found(
            BookMetadata(
                title=info.get("title"),
                author=", ".join(authors) if authors else None,
                publisher=info.get("publisher"),
                cover_url=thumbnail or None,
                categories=categories,
                genre=classify(categories),
                source=self.name,
            )
        )


class OpenLibraryProvider:
    """Fallback provider: Open Library edition record plus its work's subjects."""

    name = "open_library"

    def __init__(self, contact_email: str = "", timeout: float = 8.0) -> None:
        self.user_agent = _ol_user_agent(contact_email)
        self.timeout = timeout
        self._last_request: float = 0.0  # monotonic timestamp of last OL request
        self._throttle = asyncio.Lock()

    async def _ol_get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """Rate-limited GET for Open Library endpoints.

        Enforces per-request throttling and sets the required User-Agent header.
        """
        async with self._throttle:
            elapsed = time.monotonic() - self._last_request
            if elapsed < _OL_MIN_INTERVAL:
                await asyncio.sleep(_OL_MIN_INTERVAL - elapsed)
            self._last_request = time.monotonic()

        return await client.get(
            url,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
            follow_redirects=True,
        )

    async def _work_subjects(
        self, client: httpx.AsyncClient, work_key: str, isbn: str
    ) -> list[str] | None:
        """Subjects from the work record, or None if it has none or cannot be read."""
        try:
            resp = await self._ol_get(client, f"{OPEN_LIBRARY_URL}{work_key}.json")
            if resp.status_code != 200:
                log.debug("works_data_miss", isbn=isbn, work_key=work_key, status=resp.status_code)
                return None
            subjects = resp.json().get("subjects")
            return list(subjects) if subjects is not None else None
        except (httpx.HTTPError, ValueError) as e:
            log.debug("works_data_error", isbn=isbn, work_key=work_key, error=str(e))
            return None

    async def lookup(self, client: httpx.AsyncClient, isbn: str) -> LookupResult:
        try:
            resp = await self._ol_get(client, f"{OPEN_LIBRARY_URL}/isbn/{isbn}.json")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            return LookupResult.failed(f"http error: {e}")
        except ValueError as e:
            return LookupResult.failed(f"bad json: {e}")

        subjects = None
        works = data.get("works") or []
        work_key = works[0].get("key") if works else None
        if work_key:
            subjects = await self._work_subjects(client, work_key, isbn)
        if subjects is None:
            subjects = list(data.get("subjects") or [])

        authors = data.get("authors") or []
        author = ", ".join(a.get("name") or "Unknown" for a in authors) if authors else None

        publishers = data.get("publishers") or []
        covers = data.get("covers") or []
        cover_url = f"{OPEN_LIBRARY_COVERS_URL}/{covers[0]}-M.jpg" if covers else None

        return LookupResult.found(
            BookMetadata(
                title=data.get("title"),
                author=author,
                publisher=publishers[0] if publishers else None,
                cover_url=cover_url,
                categories=subjects,
                genre=classify(subjects),
                source=self.name,
            )
        )


def default_providers() -> list[MetadataProvider]:
    return [
        GoogleBooksProvider(
            api_key=settings.google_books_api_key, timeout=settings.provider_timeout
        ),
        OpenLibraryProvider(
            contact_email=settings.ol_contact_email, timeout=settings.provider_timeout
        ),
    ]


class MetadataResolver:
    """Tries each provider once, in order, and returns the first hit.

    Default order: Google Books, then Open Library.
    """

    def __init__(
        self,
        providers: list[MetadataProvider] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.providers = providers if providers is not None else default_providers()
        self.client = client

    async def _first_hit(self, client: httpx.AsyncClient, isbn: str) -> BookMetadata | None:
        for provider in self.providers:
            try:
                result = await provider.lookup(client, isbn)
            except Exception as e:
                log.warning("provider_crashed", provider=provider.name, isbn=isbn, error=repr(e))
                continue
            if result.ok:
                log.debug("provider_hit", provider=provider.name, isbn=isbn, title=result.metadata.title)
                return result.metadata
            log.debug("provider_miss", provider=provider.name, isbn=isbn, reason=result.failure)

        log.info("metadata_not_found", isbn=isbn, providers=[p.name for p in self.providers])
        return None

    async def resolve(self, isbn: str) -> BookMetadata | None:
        """Fetch metadata for a validated ISBN, or None if no provider has it."""
        if self.client is not None:
            return await self._first_hit(self.client, isbn)
        async with httpx.AsyncClient() as client:
            return await self._first_hit(client, isbn)
