"""Library record storage: the store contract plus in-memory and SQLite backends."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import structlog

from .errors import DuplicateISBN, StorageFailure
from .models import Book, BookUpdate, LibraryStats, NewBook

log = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _apply_update(book: Book, update: BookUpdate) -> Book:
    changes = update.changes()
    if "categories" in changes:
        changes["categories"] = list(changes["categories"] or [])
    if changes.get("title"):
        changes["metadata_fetched"] = _now()
    return replace(book, **changes)


def _matches(book: Book, text: str) -> bool:
    lowered = text.lower()
    return (
        lowered in (book.title or "").lower()
        or lowered in (book.author or "").lower()
        or lowered in (book.genre or "").lower()
        or text in book.isbn
    )


def _stats(books: list[Book]) -> LibraryStats:
    return LibraryStats(
        total_books=len(books),
        genres=len({b.genre for b in books if b.genre}),
        pending=sum(1 for b in books if b.metadata_fetched is None),
    )


def _newest_first(books: list[Book]) -> list[Book]:
    return sorted(
        books,
        key=lambda b: b.scanned_at or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )


def _by_title(books: list[Book]) -> list[Book]:
    return sorted(books, key=lambda b: (b.title or "").casefold())


class BookStore(ABC):
    """Async CRUD contract the scan pipeline and web layer depend on.

    ISBN is a unique secondary key: create() must reject a second record
    with the same ISBN by raising DuplicateISBN.
    """

    @abstractmethod
    async def get(self, book_id: str) -> Book | None: ...

    @abstractmethod
    async def get_by_isbn(self, isbn: str) -> Book | None: ...

    @abstractmethod
    async def create(self, shell: NewBook) -> Book: ...

    @abstractmethod
    async def patch(self, book_id: str, update: BookUpdate) -> Book | None: ...

    @abstractmethod
    async def delete(self, book_id: str) -> bool: ...

    @abstractmethod
    async def list_all(self) -> list[Book]: ...

    async def list_by_genre(self, genre: str) -> list[Book]:
        return _by_title([b for b in await self.list_all() if b.genre == genre])

    async def search(self, text: str) -> list[Book]:
        return [b for b in await self.list_all() if _matches(b, text)]

    async def stats(self) -> LibraryStats:
        return _stats(await self.list_all())


def _build(shell: NewBook) -> Book:
    now = _now()
    return Book(
        id=uuid.uuid4().hex,
        isbn=shell.isbn,
        title=shell.title or "",
        author=shell.author,
        publisher=shell.publisher,
        cover_url=shell.cover_url,
        genre=shell.genre,
        categories=list(shell.categories),
        scanned_at=now,
        metadata_fetched=now if shell.title else None,
        is_manual_entry=shell.is_manual_entry,
    )


class MemoryBookStore(BookStore):
    """Dict-backed store. All mutations hold one asyncio.Lock."""

    def __init__(self) -> None:
        self._books: dict[str, Book] = {}
        self._by_isbn: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, book_id: str) -> Book | None:
        return self._books.get(book_id)

    async def get_by_isbn(self, isbn: str) -> Book | None:
        book_id = self._by_isbn.get(isbn)
        return self._books.get(book_id) if book_id else None

    async def create(self, shell: NewBook) -> Book:
        async with self._lock:
            existing_id = self._by_isbn.get(shell.isbn)
            if existing_id:
                raise DuplicateISBN(shell.isbn, self._books.get(existing_id))
            book = _build(shell)
            self._books[book.id] = book
            self._by_isbn[book.isbn] = book.id
        log.debug("book_created", book_id=book.id, isbn=book.isbn)
        return book

    async def patch(self, book_id: str, update: BookUpdate) -> Book | None:
        async with self._lock:
            book = self._books.get(book_id)
            if book is None:
                return None
            updated = _apply_update(book, update)
            self._books[book_id] = updated
        return updated

    async def delete(self, book_id: str) -> bool:
        async with self._lock:
            book = self._books.pop(book_id, None)
            if book is None:
                return False
            self._by_isbn.pop(book.isbn, None)
        log.debug("book_deleted", book_id=book_id, isbn=book.isbn)
        return True

    async def list_all(self) -> list[Book]:
        return _newest_first(list(self._books.values()))


_COLUMNS = (
    "id, isbn, title, author, publisher, cover_url, genre, categories, "
    "scanned_at, metadata_fetched, is_manual_entry"
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _row_to_book(row: tuple) -> Book:
    (
        book_id, isbn, title, author, publisher, cover_url, genre,
        categories, scanned_at, metadata_fetched, is_manual_entry,
    ) = row
    return Book(
        id=book_id,
        isbn=isbn,
        title=title or "",
        author=author,
        publisher=publisher,
        cover_url=cover_url,
        genre=genre,
        categories=json.loads(categories) if categories else [],
        scanned_at=datetime.fromisoformat(scanned_at) if scanned_at else None,
        metadata_fetched=(
            datetime.fromisoformat(metadata_fetched) if metadata_fetched else None
        ),
        is_manual_entry=bool(is_manual_entry),
    )


class SqliteBookStore(BookStore):
    """Keep library records in a local SQLite database.

    The isbn column is UNIQUE, so a racing second insert fails in the
    database itself and surfaces as DuplicateISBN.
    """

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        if db_path != ":memory:":
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                isbn TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL DEFAULT '',
                author TEXT,
                publisher TEXT,
                cover_url TEXT,
                genre TEXT,
                categories TEXT,
                scanned_at TEXT,
                metadata_fetched TEXT,
                is_manual_entry INTEGER NOT NULL DEFAULT 0
            )"""
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            log.warning("rollback_failed", db_path=str(self.db_path), error=str(e))

    def _fetch_one(self, where: str, arg: str) -> Book | None:
        try:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM books WHERE {where} = ?", (arg,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageFailure(f"read failed: {e}") from e
        return _row_to_book(row) if row else None

    async def get(self, book_id: str) -> Book | None:
        return self._fetch_one("id", book_id)

    async def get_by_isbn(self, isbn: str) -> Book | None:
        return self._fetch_one("isbn", isbn)

    def _write(self, book: Book, *, insert: bool) -> None:
        values = (
            book.isbn,
            book.title,
            book.author,
            book.publisher,
            book.cover_url,
            book.genre,
            json.dumps(book.categories),
            _ts(book.scanned_at),
            _ts(book.metadata_fetched),
            int(book.is_manual_entry),
        )
        if insert:
            self._conn.execute(
                f"INSERT INTO books ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (book.id, *values),
            )
        else:
            self._conn.execute(
                "UPDATE books SET isbn = ?, title = ?, author = ?, publisher = ?, "
                "cover_url = ?, genre = ?, categories = ?, scanned_at = ?, "
                "metadata_fetched = ?, is_manual_entry = ? WHERE id = ?",
                (*values, book.id),
            )
        self._conn.commit()

    async def create(self, shell: NewBook) -> Book:
        book = _build(shell)
        async with self._lock:
            try:
                self._write(book, insert=True)
            except sqlite3.IntegrityError as e:
                self._rollback()
                raise DuplicateISBN(shell.isbn, self._fetch_one("isbn", shell.isbn)) from e
            except sqlite3.Error as e:
                self._rollback()
                raise StorageFailure(f"insert failed: {e}") from e
        log.debug("book_created", book_id=book.id, isbn=book.isbn)
        return book

    async def patch(self, book_id: str, update: BookUpdate) -> Book | None:
        async with self._lock:
            book = self._fetch_one("id", book_id)
            if book is None:
                return None
            updated = _apply_update(book, update)
            try:
                self._write(updated, insert=False)
            except sqlite3.Error as e:
                self._rollback()
                raise StorageFailure(f"update failed: {e}") from e
        return updated

    async def delete(self, book_id: str) -> bool:
        async with self._lock:
            try:
                cur = self._conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
                self._conn.commit()
            except sqlite3.Error as e:
                raise StorageFailure(f"delete failed: {e}") from e
        if cur.rowcount:
            log.debug("book_deleted", book_id=book_id)
        return cur.rowcount > 0

    async def list_all(self) -> list[Book]:
        try:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM books ORDER BY scanned_at DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageFailure(f"read failed: {e}") from e
        return [_row_to_book(r) for r in rows]


def open_store(kind: str = "memory", db_path: Path | str | None = None) -> BookStore:
    """Build the store named by BOOKSCAN_STORE."""
    if kind == "memory":
        return MemoryBookStore()
    if kind == "sqlite":
        return SqliteBookStore(db_path or ":memory:")
    raise ValueError(f"Unknown store: {kind!r}")
