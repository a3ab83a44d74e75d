import asyncio

import pytest

from bookscan.core.errors import DuplicateISBN, StorageFailure
from bookscan.core.models import BookUpdate, NewBook
from bookscan.core.storage import MemoryBookStore, SqliteBookStore, open_store


def run(coro):
    return asyncio.run(coro)


def test_create_shell_record(store):
    book = run(store.create(NewBook(isbn="0306406152")))

    assert book.id
    assert book.isbn == "0306406152"
    assert book.title == ""
    assert book.scanned_at is not None
    assert book.metadata_fetched is None
    assert book.pending
    assert run(store.get(book.id)) == book
    assert run(store.get_by_isbn("0306406152")) == book


def test_create_with_title_marks_metadata_fetched(store):
    book = run(store.create(NewBook(isbn="0306406152", title="Known", is_manual_entry=True)))
    assert book.metadata_fetched is not None
    assert book.is_manual_entry is True


def test_duplicate_isbn_rejected(store):
    first = run(store.create(NewBook(isbn="0306406152")))
    with pytest.raises(DuplicateISBN) as exc:
        run(store.create(NewBook(isbn="0306406152")))
    assert exc.value.existing.id == first.id
    assert run(store.stats()).total_books == 1


def test_concurrent_creates_keep_one_record(store):
    async def race():
        return await asyncio.gather(
            *(store.create(NewBook(isbn="9780306406157")) for _ in range(5)),
            return_exceptions=True,
        )

    results = run(race())
    assert sum(1 for r in results if isinstance(r, DuplicateISBN)) == 4
    assert len(run(store.list_all())) == 1


def test_patch_sets_metadata_fetched_only_with_title(store):
    book = run(store.create(NewBook(isbn="0306406152")))

    updated = run(store.patch(book.id, BookUpdate(author="Someone")))
    assert updated.author == "Someone"
    assert updated.metadata_fetched is None

    updated = run(store.patch(book.id, BookUpdate(title="Titled", categories=["A", "B"])))
    assert updated.title == "Titled"
    assert updated.author == "Someone"
    assert updated.categories == ["A", "B"]
    assert updated.metadata_fetched is not None
    assert run(store.get(book.id)) == updated


def test_empty_patch_is_a_no_op(store):
    book = run(store.create(NewBook(isbn="0306406152")))
    titled = run(store.patch(book.id, BookUpdate(title="Titled")))

    unchanged = run(store.patch(book.id, BookUpdate()))
    assert unchanged == titled
    assert unchanged.metadata_fetched == titled.metadata_fetched


def test_patch_can_clear_a_field(store):
    book = run(store.create(NewBook(isbn="0306406152", author="A")))
    assert run(store.patch(book.id, BookUpdate(author=None))).author is None


def test_patch_missing_book_returns_none(store):
    assert run(store.patch("missing", BookUpdate(title="x"))) is None


def test_delete(store):
    book = run(store.create(NewBook(isbn="0306406152")))
    assert run(store.delete(book.id)) is True
    assert run(store.delete(book.id)) is False
    assert run(store.get_by_isbn("0306406152")) is None
    # ISBN is free again after delete
    run(store.create(NewBook(isbn="0306406152")))


def test_delete_missing_returns_false(store):
    assert run(store.delete("nope")) is False


def _seed(store):
    async def seed():
        a = await store.create(NewBook(isbn="0306406152", title="Zebra Tales", author="Ann", genre="Fiction"))
        await asyncio.sleep(0.01)
        b = await store.create(NewBook(isbn="9780306406157", title="apple pie", author="Bob Baker", genre="Fiction"))
        await asyncio.sleep(0.01)
        c = await store.create(NewBook(isbn="0201530821", genre="Science"))
        return a, b, c

    return run(seed())


def test_list_all_newest_first(store):
    a, b, c = _seed(store)
    assert [x.id for x in run(store.list_all())] == [c.id, b.id, a.id]


def test_list_by_genre_title_ascending(store):
    a, b, _ = _seed(store)
    assert [x.id for x in run(store.list_by_genre("Fiction"))] == [b.id, a.id]
    assert run(store.list_by_genre("Travel")) == []


def test_search(store):
    a, b, c = _seed(store)
    assert [x.id for x in run(store.search("ZEBRA"))] == [a.id]
    assert [x.id for x in run(store.search("baker"))] == [b.id]
    assert {x.id for x in run(store.search("fiction"))} == {a.id, b.id}
    assert [x.id for x in run(store.search("2015308"))] == [c.id]
    assert run(store.search("nothing-like-this")) == []


def test_stats(store):
    _seed(store)
    stats = run(store.stats())
    assert stats.total_books == 3
    assert stats.genres == 2
    assert stats.pending == 1
    assert stats.to_dict() == {"totalBooks": 3, "genres": 2, "pending": 1}


def test_sqlite_store_persists_across_connections(tmp_path):
    path = tmp_path / "lib.db"
    first = SqliteBookStore(path)
    book = run(first.create(NewBook(isbn="0306406152", title="Kept", categories=["X"])))
    first.close()

    second = SqliteBookStore(path)
    again = run(second.get(book.id))
    second.close()
    assert again == book


def test_open_store():
    assert isinstance(open_store("memory"), MemoryBookStore)
    assert isinstance(open_store("sqlite"), SqliteBookStore)
    with pytest.raises(ValueError):
        open_store("redis")


@pytest.mark.parametrize("call", [
    lambda s: s.get("any"),
    lambda s: s.get_by_isbn("0306406152"),
    lambda s: s.create(NewBook(isbn="0306406152")),
    lambda s: s.patch("any", BookUpdate(title="T")),
    lambda s: s.delete("any"),
    lambda s: s.list_all(),
    lambda s: s.stats(),
])
def test_closed_sqlite_store_raises_storage_failure(tmp_path, call):
    store = SqliteBookStore(tmp_path / "books.db")
    store.close()
    with pytest.raises(StorageFailure):
        run(call(store))
