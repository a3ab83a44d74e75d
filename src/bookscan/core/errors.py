"""Exceptions raised by the scan pipeline and the storage layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Book


class BookscanError(Exception):
    """Base class for all bookscan errors."""


class InvalidISBN(BookscanError, ValueError):
    def __init__(self, raw: str | None) -> None:
        self.raw = raw
        super().__init__(f"Invalid ISBN: {raw!r}")


class DuplicateISBN(BookscanError):
    def __init__(self, isbn: str, existing: Book | None = None) -> None:
        self.isbn = isbn
        self.existing = existing
        super().__init__(f"Book with ISBN {isbn} already exists")


class BookNotFound(BookscanError, KeyError):
    def __init__(self, book_id: str) -> None:
        self.book_id = book_id
        super().__init__(book_id)

    def __str__(self) -> str:
        return f"Book {self.book_id} not found"


class StorageFailure(BookscanError):
    """Unexpected failure inside a storage backend. Not retried."""
