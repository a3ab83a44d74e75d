"""Map provider category/subject vocabulary onto the library's genre taxonomy."""

from __future__ import annotations

import math
import re
from enum import Enum


class Genre(str, Enum):
    FICTION = "Fiction"
    SCIENCE = "Science"
    HISTORY = "History"
    TECHNOLOGY = "Technology"
    BIOGRAPHY = "Biography"
    DESIGN = "Design"
    PHILOSOPHY = "Philosophy"
    ART = "Art"
    BUSINESS = "Business"
    HEALTH = "Health"
    TRAVEL = "Travel"
    CHILDREN = "Children"
    OTHER = "Other"

    def __str__(self) -> str:
        return self.value


# Order matters twice over: genres are tried top to bottom, and within a genre
# the keywords are tried left to right. The first substring hit wins.
GENRE_KEYWORDS: tuple[tuple[Genre, tuple[str, ...]], ...] = (
    (
        Genre.FICTION,
        (
            "fiction", "novel", "literary fiction", "contemporary fiction",
            "historical fiction", "romance", "mystery", "thriller", "crime",
            "fantasy", "science fiction", "horror", "adventure",
        ),
    ),
    (
        Genre.SCIENCE,
        (
            "science", "physics", "chemistry", "biology", "mathematics",
            "astronomy", "medicine", "engineering", "technology", "research",
        ),
    ),
    (
        Genre.HISTORY,
        (
            "history", "historical", "biography", "autobiography", "memoir",
            "world history", "american history", "european history",
            "ancient history",
        ),
    ),
    (
        Genre.BUSINESS,
        (
            "business", "economics", "finance", "management", "marketing",
            "entrepreneurship", "leadership", "investing", "career",
        ),
    ),
    (
        Genre.TECHNOLOGY,
        (
            "computer science", "programming", "software", "technology",
            "internet", "web development", "artificial intelligence", "data",
        ),
    ),
    (
        Genre.PHILOSOPHY,
        (
            "philosophy", "ethics", "logic", "metaphysics",
            "political philosophy", "moral philosophy", "eastern philosophy",
            "western philosophy",
        ),
    ),
    (
        Genre.ART,
        (
            "art", "painting", "sculpture", "photography", "design",
            "architecture", "music", "film", "theater", "dance",
        ),
    ),
    (
        Genre.HEALTH,
        (
            "health", "fitness", "nutrition", "diet", "wellness",
            "mental health", "psychology", "self-help", "medical",
        ),
    ),
    (
        Genre.TRAVEL,
        ("travel", "geography", "culture", "guidebook", "adventure travel"),
    ),
    (
        Genre.CHILDREN,
        (
            "children", "juvenile", "young adult", "picture book",
            "educational", "kids",
        ),
    ),
)

# (upper bound exclusive, genre) for Dewey Decimal classes 0-999.
DEWEY_RANGES: tuple[tuple[int, Genre], ...] = (
    (300, Genre.PHILOSOPHY),  # 000 general works, 100 philosophy, 200 religion
    (400, Genre.BUSINESS),  # social sciences
    (500, Genre.OTHER),  # language
    (600, Genre.SCIENCE),
    (700, Genre.TECHNOLOGY),
    (800, Genre.ART),
    (900, Genre.FICTION),  # literature
    (1000, Genre.HISTORY),
)

_DEWEY_RE = re.compile(r"\s*(\d+)")


def classify(categories: list[str] | None) -> Genre | str:
    """Pick a genre for a list of free-text categories.

    Returns Genre.OTHER for an empty list. When no keyword matches anywhere,
    the first category is returned verbatim instead of a Genre member.
    """
    if not categories:
        return Genre.OTHER

    lowered = [c.lower() for c in categories]
    for genre, keywords in GENRE_KEYWORDS:
        for keyword in keywords:
            if any(keyword in c for c in lowered):
                return genre

    return categories[0] or Genre.OTHER


def classify_dewey(code: str | float | None) -> Genre:
    """Map a Dewey Decimal class number (e.g. "823.914") to a genre."""
    if code is None or isinstance(code, bool):
        return Genre.OTHER
    if isinstance(code, (int, float)):
        if not math.isfinite(code) or code < 0:
            return Genre.OTHER
        number = int(code)
    elif isinstance(code, str):
        m = _DEWEY_RE.match(code)
        if not m:
            return Genre.OTHER
        number = int(m.group(1))
    else:
        return Genre.OTHER

    for upper, genre in DEWEY_RANGES:
        if number < upper:
            return genre
    return Genre.OTHER
