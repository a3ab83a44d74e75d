"""Data models for library records and resolved book metadata."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime

from .genres import Genre


class _Unset:
    """Marker for a field that is absent from a partial update."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class BookMetadata:
    title: str | None = None
    author: str | None = None
    publisher: str | None = None
    cover_url: str | None = None
    categories: list[str] = field(default_factory=list)
    # A Genre member, or the raw first category when no keyword matched.
    genre: Genre | str | None = None
    source: str = ""


@dataclass
class NewBook:
    """Fields supplied when a record is first written."""

    isbn: str
    title: str = ""
    author: str | None = None
    publisher: str | None = None
    cover_url: str | None = None
    genre: str | None = None
    categories: list[str] = field(default_factory=list)
    is_manual_entry: bool = False


@dataclass
class Book:
    id: str
    isbn: str
    title: str = ""
    author: str | None = None
    publisher: str | None = None
    cover_url: str | None = None
    genre: str | None = None
    categories: list[str] = field(default_factory=list)
    scanned_at: datetime | None = None
    metadata_fetched: datetime | None = None
    is_manual_entry: bool = False

    @property
    def pending(self) -> bool:
        return self.metadata_fetched is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "coverURL": self.cover_url,
            "genre": self.genre,
            "categories": list(self.categories),
            "scannedAt": self.scanned_at.isoformat() if self.scanned_at else None,
            "metadataFetched": (
                self.metadata_fetched.isoformat() if self.metadata_fetched else None
            ),
            "isManualEntry": self.is_manual_entry,
        }


@dataclass
class BookUpdate:
    """Partial update of a Book. Fields left as UNSET are not touched."""

    title: str | _Unset = UNSET
    author: str | None | _Unset = UNSET
    publisher: str | None | _Unset = UNSET
    cover_url: str | None | _Unset = UNSET
    genre: str | None | _Unset = UNSET
    categories: list[str] | _Unset = UNSET
    is_manual_entry: bool | _Unset = UNSET

    def changes(self) -> dict:
        """Return only the fields that were explicitly set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    @classmethod
    def from_metadata(cls, metadata: BookMetadata) -> BookUpdate:
        """Build the single enrichment patch for a shell record.

        Only fields the provider actually returned are set; everything else
        stays UNSET so the stored values survive.
        """
        genre = metadata.genre
        if isinstance(genre, Genre):
            genre = genre.value

        def present(value):
            return UNSET if value is None else value

        return cls(
            title=metadata.title or UNSET,
            author=present(metadata.author),
            publisher=present(metadata.publisher),
            cover_url=present(metadata.cover_url),
            genre=present(genre),
            categories=list(metadata.categories) if metadata.categories else UNSET,
        )


@dataclass
class LibraryStats:
    total_books: int = 0
    genres: int = 0
    pending: int = 0

    def to_dict(self) -> dict:
        return {
            "totalBooks": self.total_books,
            "genres": self.genres,
            "pending": self.pending,
        }
