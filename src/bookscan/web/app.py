"""FastAPI web application for Bookscan."""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from ..core import isbn as isbn_tools
from ..core.catalog import generate_csv_bytes, generate_json_bytes
from ..core.config import configure_logging, settings
from ..core.errors import BookNotFound, DuplicateISBN, InvalidISBN, StorageFailure
from ..core.fetcher import MetadataResolver
from ..core.scanner import Scanner
from ..core.storage import BookStore, open_store
from .schemas import BookCreateRequest, BookUpdateRequest, ScanRequest

log = structlog.get_logger()

VERSION = "0.1.0"


class RateLimiter:
    """Sliding-window request counter per client IP."""

    def __init__(self, limit: int, window: int) -> None:
        self.limit = limit
        self.window = window
        self._log: dict[str, list[float]] = defaultdict(list)

    def is_limited(self, ip: str) -> bool:
        window_start = time.time() - self.window
        # Trim old entries
        self._log[ip] = [t for t in self._log[ip] if t > window_start]
        return len(self._log[ip]) >= self.limit

    def record(self, ip: str) -> None:
        self._log[ip].append(time.time())


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _split_fields(fields: str | None) -> list[str] | None:
    if not fields:
        return None
    return [f.strip() for f in fields.split(",") if f.strip()]


def _message(status: int, message: str) -> JSONResponse:
    return JSONResponse({"message": message}, status_code=status)


def create_app(
    store: BookStore | None = None,
    resolver: MetadataResolver | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the app. Anything not injected is built from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        scan_resolver = resolver
        if scan_resolver is None:
            client = httpx.AsyncClient()
            scan_resolver = MetadataResolver(client=client)
        app.state.scanner = Scanner(app.state.store, scan_resolver)
        try:
            yield
        finally:
            await app.state.scanner.drain()
            if client is not None:
                await client.aclose()

    app = FastAPI(title="Bookscan", lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.store = store if store is not None else open_store(settings.store, settings.db_path)
    app.state.rate_limiter = rate_limiter or RateLimiter(
        settings.rate_limit, settings.rate_limit_window
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    @app.exception_handler(InvalidISBN)
    async def invalid_isbn(request: Request, exc: InvalidISBN):
        return _message(400, "Invalid ISBN format")

    @app.exception_handler(DuplicateISBN)
    async def duplicate_isbn(request: Request, exc: DuplicateISBN):
        body = {"message": "Book with this ISBN already exists"}
        if exc.existing is not None:
            body["book"] = exc.existing.to_dict()
        return JSONResponse(body, status_code=409)

    @app.exception_handler(BookNotFound)
    async def book_not_found(request: Request, exc: BookNotFound):
        return _message(404, "Book not found")

    @app.exception_handler(StorageFailure)
    async def storage_failure(request: Request, exc: StorageFailure):
        log.error("storage_failure", path=request.url.path, error=str(exc))
        return _message(500, "Storage error")

    def _store(request: Request) -> BookStore:
        return request.app.state.store

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "environment": settings.env,
        }

    @app.get("/api/books")
    async def list_books(request: Request):
        return [b.to_dict() for b in await _store(request).list_all()]

    @app.get("/api/books/stats")
    async def book_stats(request: Request):
        return (await _store(request).stats()).to_dict()

    @app.get("/api/books/search")
    async def search_books(request: Request, q: str | None = None):
        if not q or not q.strip():
            return _message(400, "Search query is required")
        return [b.to_dict() for b in await _store(request).search(q)]

    @app.get("/api/books/genre/{genre}")
    async def books_by_genre(request: Request, genre: str):
        return [b.to_dict() for b in await _store(request).list_by_genre(genre)]

    @app.get("/api/books/isbn/{isbn}")
    async def book_by_isbn(request: Request, isbn: str):
        book = await _store(request).get_by_isbn(isbn_tools.normalize(isbn))
        if book is None:
            return _message(404, "Book not found")
        return book.to_dict()

    @app.get("/api/books/export/csv")
    async def export_csv(request: Request, fields: str | None = Query(default=None)):
        books = await _store(request).list_all()
        try:
            content = generate_csv_bytes(books, _split_fields(fields))
        except ValueError as e:
            return _message(400, str(e))
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="book-catalog.csv"'},
        )

    @app.get("/api/books/export/json")
    async def export_json(request: Request, fields: str | None = Query(default=None)):
        books = await _store(request).list_all()
        try:
            content = generate_json_bytes(books, _split_fields(fields))
        except ValueError as e:
            return _message(400, str(e))
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": 'attachment; filename="book-catalog.json"'},
        )

    @app.get("/api/books/{book_id}")
    async def get_book(request: Request, book_id: str):
        book = await _store(request).get(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return book.to_dict()

    @app.post("/api/books", status_code=201)
    async def create_book(request: Request, body: BookCreateRequest):
        if not isbn_tools.validate(body.isbn):
            raise InvalidISBN(body.isbn)
        book = await _store(request).create(body.to_new_book(isbn_tools.normalize(body.isbn)))
        log.info("book_added", isbn=book.isbn, book_id=book.id, manual=book.is_manual_entry)
        return book.to_dict()

    @app.post("/api/scan", status_code=201)
    async def scan(request: Request, body: ScanRequest):
        limiter: RateLimiter = request.app.state.rate_limiter
        ip = _client_ip(request)
        if limiter.is_limited(ip):
            log.warning("rate_limited", ip=ip)
            return _message(429, "Too many requests. Please wait a minute and try again.")
        limiter.record(ip)

        scanner: Scanner = request.app.state.scanner
        if body.wait:
            book = await scanner.scan(body.isbn, manual=body.manual)
        else:
            book = await scanner.start_scan(body.isbn, manual=body.manual)
        return book.to_dict()

    @app.post("/api/books/{book_id}/enrich")
    async def enrich_book(request: Request, book_id: str):
        scanner: Scanner = request.app.state.scanner
        return (await scanner.enrich(book_id)).to_dict()

    @app.patch("/api/books/{book_id}")
    async def update_book(request: Request, book_id: str, body: BookUpdateRequest):
        book = await _store(request).patch(book_id, body.to_update())
        if book is None:
            raise BookNotFound(book_id)
        return book.to_dict()

    @app.delete("/api/books/{book_id}", status_code=204)
    async def delete_book(request: Request, book_id: str):
        if not await _store(request).delete(book_id):
            raise BookNotFound(book_id)
        return Response(status_code=204)

    return app


app = create_app()


def main():
    configure_logging(settings.log_level)
    is_dev = settings.env == "dev"
    uvicorn.run(
        "bookscan.web.app:app",
        host="0.0.0.0",
        port=settings.port,
        reload=is_dev,
    )
