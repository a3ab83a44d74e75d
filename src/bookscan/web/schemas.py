"""Request payloads accepted by the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import BookUpdate, NewBook


class ScanRequest(BaseModel):
    """Scan or type an ISBN. With wait=false the lookup runs in the background."""

    isbn: str
    manual: bool = False
    wait: bool = True


class BookCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    isbn: str
    title: str = ""
    author: str | None = None
    publisher: str | None = None
    cover_url: str | None = Field(default=None, alias="coverURL")
    genre: str | None = None
    categories: list[str] = Field(default_factory=list)
    is_manual_entry: bool = Field(default=True, alias="isManualEntry")

    def to_new_book(self, isbn: str) -> NewBook:
        return NewBook(
            isbn=isbn,
            title=self.title,
            author=self.author,
            publisher=self.publisher,
            cover_url=self.cover_url,
            genre=self.genre,
            categories=list(self.categories),
            is_manual_entry=self.is_manual_entry,
        )


class BookUpdateRequest(BaseModel):
    """Partial update; only the keys present in the body are applied."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str | None = None
    author: str | None = None
    publisher: str | None = None
    cover_url: str | None = Field(default=None, alias="coverURL")
    genre: str | None = None
    categories: list[str] | None = None
    is_manual_entry: bool | None = Field(default=None, alias="isManualEntry")

    def to_update(self) -> BookUpdate:
        changes = self.model_dump(exclude_unset=True)
        if changes.get("title") is None:
            changes.pop("title", None)
        if "categories" in changes and changes["categories"] is None:
            changes["categories"] = []
        if changes.get("is_manual_entry") is None:
            changes.pop("is_manual_entry", None)
        return BookUpdate(**changes)
