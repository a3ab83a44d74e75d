"""Export the library as CSV or JSON with a caller-chosen set of fields."""

from __future__ import annotations

import csv
import io
import json

import structlog

from .models import Book

log = structlog.get_logger()

# field name -> CSV column header
EXPORT_FIELDS: dict[str, str] = {
    "isbn": "ISBN",
    "title": "Title",
    "author": "Author",
    "genre": "Genre",
    "publisher": "Publisher",
    "categories": "Categories",
    "cover_url": "Cover URL",
    "scanned_at": "Scanned At",
}

DEFAULT_FIELDS: tuple[str, ...] = ("isbn", "title", "author", "genre")


def resolve_fields(fields: list[str] | tuple[str, ...] | None) -> list[str]:
    """Validate a field selection, falling back to the default set."""
    if not fields:
        return list(DEFAULT_FIELDS)
    unknown = [f for f in fields if f not in EXPORT_FIELDS]
    if unknown:
        raise ValueError(f"Unknown export fields: {', '.join(unknown)}")
    return list(fields)


def _value(book: Book, name: str) -> str:
    if name == "categories":
        return "; ".join(book.categories)
    if name == "scanned_at":
        return book.scanned_at.isoformat() if book.scanned_at else ""
    return getattr(book, name) or ""


def generate_csv_bytes(books: list[Book], fields: list[str] | None = None) -> bytes:
    """Render books as CSV, every cell quoted."""
    names = resolve_fields(fields)
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL)
    writer.writerow([EXPORT_FIELDS[n] for n in names])
    for book in books:
        writer.writerow([_value(book, n) for n in names])
    log.info("csv_export", books=len(books), fields=names)
    return buf.getvalue().encode("utf-8")


def generate_json_bytes(books: list[Book], fields: list[str] | None = None) -> bytes:
    names = resolve_fields(fields)
    rows = []
    for book in books:
        row = {}
        for n in names:
            row[n] = list(book.categories) if n == "categories" else _value(book, n)
        rows.append(row)
    log.info("json_export", books=len(books), fields=names)
    return json.dumps(rows, indent=2, ensure_ascii=False).encode("utf-8")
