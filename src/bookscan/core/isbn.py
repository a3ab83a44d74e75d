"""ISBN-10 / ISBN-13 normalization and checksum validation."""

from __future__ import annotations

import re

_STRIP_RE = re.compile(r"[-\s]")


def normalize(raw: str | None) -> str:
    """Strip hyphens and whitespace."""
    if not raw:
        return ""
    return _STRIP_RE.sub("", raw)


def _isbn10_ok(isbn: str) -> bool:
    total = sum(int(ch) * (10 - i) for i, ch in enumerate(isbn[:9]))
    remainder = total % 11
    if remainder == 0:
        expected = "0"
    elif remainder == 1:
        expected = "X"
    else:
        expected = str(11 - remainder)
    return isbn[9].upper() == expected


def _isbn13_ok(isbn: str) -> bool:
    total = sum(int(ch) * (1 if i % 2 == 0 else 3) for i, ch in enumerate(isbn[:12]))
    return int(isbn[12]) == (10 - total % 10) % 10


def validate(raw: str | None) -> bool:
    """Return True if raw is a well-formed ISBN-10 or ISBN-13.

    Never raises; anything malformed is simply invalid.
    """
    isbn = normalize(raw)
    # str.isdigit() accepts other Unicode digits, so check ASCII explicitly.
    if not (isbn.isascii() and isbn.isdigit()):
        return False
    if len(isbn) == 10:
        return _isbn10_ok(isbn)
    if len(isbn) == 13:
        return _isbn13_ok(isbn)
    return False


def format_isbn(raw: str | None) -> str:
    """Hyphenate an ISBN for display. Other lengths come back unchanged."""
    isbn = normalize(raw)
    if len(isbn) == 10:
        return f"{isbn[0]}-{isbn[1:5]}-{isbn[5:9]}-{isbn[9]}"
    if len(isbn) == 13:
        return f"{isbn[:3]}-{isbn[3]}-{isbn[4:8]}-{isbn[8:12]}-{isbn[12]}"
    return raw or ""
