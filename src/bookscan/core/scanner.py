"""Scan workflow: validate, deduplicate, create a shell record, enrich it."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog

from . import isbn as isbn_tools
from .errors import BookNotFound, DuplicateISBN, InvalidISBN
from .fetcher import MetadataResolver
from .models import Book, BookUpdate, NewBook
from .storage import BookStore

log = structlog.get_logger()


class Scanner:
    """Turns a scanned or typed ISBN into a library record.

    The shell record is always written before any network lookup, so a
    scan is recorded even when every metadata provider is down.
    """

    def __init__(self, store: BookStore, resolver: MetadataResolver) -> None:
        self.store = store
        self.resolver = resolver
        # isbn -> (lock, number of coroutines holding or waiting on it)
        self._isbn_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._tasks: set[asyncio.Task] = set()

    @asynccontextmanager
    async def _isbn_guard(self, isbn: str):
        """Serialize dedup-and-create per ISBN; the entry goes once unused."""
        lock, users = self._isbn_locks.get(isbn, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._isbn_locks[isbn] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._isbn_locks[isbn]
            if users <= 1:
                del self._isbn_locks[isbn]
            else:
                self._isbn_locks[isbn] = (lock, users - 1)

    async def _create_shell(self, raw: str, manual: bool) -> Book:
        if not isbn_tools.validate(raw):
            log.info("scan_rejected", raw=raw, reason="invalid_isbn")
            raise InvalidISBN(raw)
        isbn = isbn_tools.normalize(raw)

        async with self._isbn_guard(isbn):
            existing = await self.store.get_by_isbn(isbn)
            if existing is not None:
                log.info("scan_rejected", isbn=isbn, reason="duplicate", book_id=existing.id)
                raise DuplicateISBN(isbn, existing)
            book = await self.store.create(NewBook(isbn=isbn, is_manual_entry=manual))

        log.info("shell_created", isbn=isbn, book_id=book.id, manual=manual)
        return book

    async def _enrich(self, book: Book) -> Book:
        """Best-effort metadata fill. Returns the shell unchanged on any failure."""
        try:
            metadata = await self.resolver.resolve(book.isbn)
        except Exception as e:
            log.warning("enrichment_failed", isbn=book.isbn, book_id=book.id, error=repr(e))
            return book
        if metadata is None:
            log.info("enrichment_empty", isbn=book.isbn, book_id=book.id)
            return book

        updated = await self.store.patch(book.id, BookUpdate.from_metadata(metadata))
        if updated is None:
            # deleted while the lookup was in flight
            log.info("enrichment_orphaned", isbn=book.isbn, book_id=book.id)
            return book

        log.info(
            "enrichment_done",
            isbn=book.isbn,
            book_id=book.id,
            source=metadata.source,
            title=updated.title,
            genre=updated.genre,
        )
        return updated

    async def scan(self, raw: str, manual: bool = False) -> Book:
        """Run the whole scan and return the (possibly still untitled) book.

        Raises InvalidISBN or DuplicateISBN before anything is written.
        """
        book = await self._create_shell(raw, manual)
        return await self._enrich(book)

    async def start_scan(self, raw: str, manual: bool = False) -> Book:
        """Create the shell now and enrich it in a background task."""
        book = await self._create_shell(raw, manual)
        task = asyncio.create_task(self._enrich_in_background(book))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return book

    async def _enrich_in_background(self, book: Book) -> None:
        try:
            await self._enrich(book)
        except Exception as e:
            log.error("background_enrichment_crashed", book_id=book.id, error=repr(e))

    async def enrich(self, book_id: str) -> Book:
        """Retry the metadata lookup for a pending record.

        Records that already carry fetched metadata are returned untouched.
        """
        book = await self.store.get(book_id)
        if book is None:
            raise BookNotFound(book_id)
        if not book.pending:
            log.info("enrichment_skipped", isbn=book.isbn, book_id=book.id, reason="already_fetched")
            return book
        return await self._enrich(book)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every background enrichment that is still running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
