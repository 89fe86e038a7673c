"""Embedded document and citation store backed by SQLite FTS5."""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from archive_search.core.config import settings
from archive_search.core.exceptions import NestedTransactionError, StoreError
from archive_search.knowledge.storage import schema
from archive_search.models import Citation, CitationDirection, Document
from archive_search.models.search import DEFAULT_SEARCH_FIELDS

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


@dataclass
class FieldSnippet:
    field: str
    text: str


@dataclass
class StoreMatch:
    document: Document
    score: float
    snippets: List[FieldSnippet] = field(default_factory=list)


class DocumentStore:
    """Schema owner and sole reader/writer of persisted documents and citations.

    Transactions are explicit and flat: `begin` while a transaction is open raises
    `NestedTransactionError`. Callers that may run inside a larger unit of work
    must be told not to manage the transaction themselves.
    """

    def __init__(
        self,
        db_path: str | Path = MEMORY_PATH,
        *,
        read_only: bool = False,
        snippet_window: Optional[int] = None,
    ) -> None:
        self.db_path = str(db_path)
        self.read_only = read_only
        self.snippet_window = snippet_window or settings.SNIPPET_WINDOW_CHARS
        self._lock = threading.RLock()
        self._in_transaction = False
        self._reader: Optional[DocumentStore] = None
        self._conn = self._connect()
        if not read_only:
            self.setup_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            if self.read_only:
                uri = f"{Path(self.db_path).resolve().as_uri()}?mode=ro"
                conn = sqlite3.connect(uri, uri=True, isolation_level=None, check_same_thread=False)
                conn.execute("PRAGMA query_only=ON")
            else:
                if self.db_path != MEMORY_PATH:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
                conn.executescript(schema.PRAGMAS)
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open search database at {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def setup_schema(self) -> None:
        with self._guard("setup_schema"):
            self._conn.executescript(schema.CREATE_SCHEMA)

    def reader(self) -> "DocumentStore":
        """Return a read-only store on a separate connection to the same file.

        Under WAL the reader sees the last committed state and never waits on an
        open write transaction. In-memory databases cannot be shared, so they
        return the store itself.
        """

        if self.read_only or self.db_path == MEMORY_PATH:
            return self
        with self._lock:
            if self._reader is None:
                self._reader = DocumentStore(self.db_path, read_only=True, snippet_window=self.snippet_window)
            return self._reader

    def close(self) -> None:
        with self._lock:
            if self._reader is not None:
                self._reader.close()
                self._reader = None
            if self._conn is not None:
                self._conn.close()
                self._conn = None  # type: ignore[assignment]

    def __enter__(self) -> "DocumentStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            if self._conn is None:
                raise StoreError(f"Store is closed; cannot {operation}")
            try:
                yield
            except sqlite3.Error as exc:
                logger.error("Store operation %s failed: %s", operation, exc)
                raise StoreError(f"Store operation {operation} failed: {exc}", details={"operation": operation}) from exc

    @contextmanager
    def _write_scope(self, operation: str) -> Iterator[None]:
        """Make a multi-statement write atomic when no transaction is open."""

        with self._guard(operation):
            if self.read_only:
                raise StoreError(f"Store is read-only; cannot {operation}")
            if self._in_transaction:
                yield
                return
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin(self) -> None:
        with self._guard("begin"):
            if self._in_transaction:
                raise NestedTransactionError("A transaction is already open on this store")
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True

    def commit(self) -> None:
        with self._guard("commit"):
            if not self._in_transaction:
                raise StoreError("No transaction is open")
            self._conn.execute("COMMIT")
            self._in_transaction = False

    def rollback(self) -> None:
        with self._guard("rollback"):
            if not self._in_transaction:
                raise StoreError("No transaction is open")
            try:
                self._conn.execute("ROLLBACK")
            finally:
                self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator["DocumentStore"]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def upsert(self, document: Document) -> str:
        """Insert the document or replace its fields; idempotent on `id`."""

        metadata = json.dumps(document.metadata or {}, ensure_ascii=False, default=str)
        with self._write_scope("upsert"):
            exists = self._conn.execute(schema.DOCUMENT_EXISTS, (document.id,)).fetchone() is not None
            if exists:
                self._conn.execute(
                    schema.UPDATE_DOCUMENT,
                    (
                        document.title,
                        document.path,
                        document.source.value,
                        document.type.value,
                        document.date,
                        metadata,
                        document.id,
                    ),
                )
                self._conn.execute(schema.DELETE_DOCUMENT_CONTENT, (document.id,))
            else:
                self._conn.execute(
                    schema.INSERT_DOCUMENT,
                    (
                        document.id,
                        document.title,
                        document.path,
                        document.source.value,
                        document.type.value,
                        document.date,
                        metadata,
                    ),
                )
            self._conn.execute(
                schema.INSERT_DOCUMENT_CONTENT,
                (document.id, document.title, document.content or "", document.query or ""),
            )
        return document.id

    def get(self, document_id: str) -> Optional[Document]:
        with self._guard("get"):
            row = self._conn.execute(schema.SELECT_DOCUMENT, (document_id,)).fetchone()
        return self._row_to_document(row) if row else None

    def exists(self, document_id: str) -> bool:
        with self._guard("exists"):
            return self._conn.execute(schema.DOCUMENT_EXISTS, (document_id,)).fetchone() is not None

    def delete(self, document_id: str) -> bool:
        """Remove a document, the citations it owns, and inbound `target_id` links."""

        with self._write_scope("delete"):
            self._conn.execute(schema.DELETE_CITATIONS_FROM_SOURCE_CONTENT, (document_id,))
            self._conn.execute(schema.DELETE_CITATIONS_FROM_SOURCE, (document_id,))
            self._conn.execute(schema.DETACH_CITATIONS_TO_TARGET, (document_id,))
            self._conn.execute(schema.DELETE_DOCUMENT_CONTENT, (document_id,))
            cursor = self._conn.execute(schema.DELETE_DOCUMENT, (document_id,))
            return cursor.rowcount > 0

    def list(self) -> List[Document]:
        with self._guard("list"):
            rows = self._conn.execute(schema.SELECT_ALL_DOCUMENTS).fetchall()
        return [self._row_to_document(row) for row in rows]

    def list_ids(self) -> Dict[str, Tuple[str, str]]:
        """Map every stored id to its `(source, path)` key."""

        with self._guard("list_ids"):
            rows = self._conn.execute(schema.SELECT_DOCUMENT_KEYS).fetchall()
        return {row["id"]: (row["source"], row["path"]) for row in rows}

    # ------------------------------------------------------------------
    # Full-text search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        fields: Optional[Sequence[str]] = None,
        fuzzy: bool = False,
        limit: int = 50,
    ) -> List[StoreMatch]:
        """Ranked FTS5 search with per-field highlighted snippets."""

        requested = list(fields or DEFAULT_SEARCH_FIELDS)
        unknown = [name for name in requested if name not in schema.FTS_COLUMNS]
        if unknown:
            raise ValueError(f"Unsupported search fields: {', '.join(unknown)}")

        match_expression = build_match_expression(query, requested, fuzzy=fuzzy)
        if not match_expression:
            return []

        columns = [schema.FTS_COLUMNS[name] for name in requested]
        sql = schema.build_search_query(columns)
        with self._guard("search"):
            rows = self._conn.execute(sql, (match_expression, int(limit))).fetchall()

        matches: List[StoreMatch] = []
        for row in rows:
            snippets: List[FieldSnippet] = []
            for name, column in zip(requested, columns):
                highlighted = row[f"hl_{column}"] or ""
                if schema.HIGHLIGHT_OPEN in highlighted:
                    snippets.append(FieldSnippet(field=name, text=build_snippet(highlighted, self.snippet_window)))
            matches.append(
                StoreMatch(
                    document=self._row_to_document(row),
                    score=-float(row["score_rank"]),
                    snippets=snippets,
                )
            )
        return matches

    # ------------------------------------------------------------------
    # Citations
    # ------------------------------------------------------------------

    def add_citation(self, citation: Citation) -> str:
        citation_id = citation.id or f"cit-{uuid.uuid4().hex}"
        with self._write_scope("add_citation"):
            self._conn.execute(
                schema.INSERT_CITATION,
                (
                    citation_id,
                    citation.source_id,
                    citation.target_url,
                    citation.target_id,
                    citation.context,
                    citation.confidence,
                ),
            )
            self._conn.execute(schema.INSERT_CITATION_CONTENT, (citation_id, citation.context))
        return citation_id

    def citations_for(self, document_id: str, direction: CitationDirection | str) -> List[Citation]:
        """`citing`: who cites this document. `cited`: whom this document cites."""

        direction = CitationDirection(direction)
        sql = (
            schema.SELECT_CITATIONS_BY_TARGET
            if direction == CitationDirection.CITING
            else schema.SELECT_CITATIONS_BY_SOURCE
        )
        with self._guard("citations_for"):
            rows = self._conn.execute(sql, (document_id,)).fetchall()
        return [self._row_to_citation(row) for row in rows]

    def all_citations(self) -> List[Citation]:
        with self._guard("all_citations"):
            rows = self._conn.execute(schema.SELECT_ALL_CITATIONS).fetchall()
        return [self._row_to_citation(row) for row in rows]

    def clear_citations(self) -> int:
        with self._write_scope("clear_citations"):
            self._conn.execute(schema.DELETE_ALL_CITATION_CONTENT)
            cursor = self._conn.execute(schema.DELETE_ALL_CITATIONS)
            return max(cursor.rowcount, 0)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        with self._guard("stats"):
            document_count = self._conn.execute(schema.COUNT_DOCUMENTS).fetchone()[0]
            citation_count = self._conn.execute(schema.COUNT_CITATIONS).fetchone()[0]
            if self.db_path == MEMORY_PATH:
                page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
                size_bytes = page_count * page_size
            else:
                size_bytes = sum(
                    os.path.getsize(candidate)
                    for candidate in (self.db_path, f"{self.db_path}-wal")
                    if os.path.exists(candidate)
                )
        return {
            "document_count": int(document_count),
            "citation_count": int(citation_count),
            "size_bytes": int(size_bytes),
        }

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        try:
            metadata = json.loads(row["metadata"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable metadata for document %s", row["id"])
            metadata = {}
        return Document(
            id=row["id"],
            title=row["title"] or "",
            path=row["path"],
            source=row["source"],
            type=row["type"],
            date=row["date"],
            content=row["content"] or "",
            query=row["query"] or None,
            metadata=metadata,
        )

    @staticmethod
    def _row_to_citation(row: sqlite3.Row) -> Citation:
        return Citation(
            id=row["id"],
            source_id=row["source_id"],
            target_url=row["target_url"],
            target_id=row["target_id"],
            context=row["context"] or "",
            confidence=float(row["confidence"] if row["confidence"] is not None else 0.0),
        )


_TERM_CLEANUP = re.compile(r'["\x00-\x1f]')


def build_match_expression(query: str, fields: Sequence[str], *, fuzzy: bool = False) -> str:
    """Translate free text into an FTS5 MATCH expression.

    Every whitespace-separated term is quoted so user input never reaches the
    FTS5 query grammar; fuzzy mode turns each term into a prefix query.
    """

    terms = [_TERM_CLEANUP.sub(" ", term).strip() for term in (query or "").split()]
    terms = [term for term in terms if term]
    if not terms:
        return ""
    suffix = "*" if fuzzy else ""
    expression = " ".join(f'"{term}"{suffix}' for term in terms)
    if set(fields) == set(schema.FTS_COLUMNS):
        return expression
    return "{" + " ".join(fields) + "} : (" + expression + ")"


def build_snippet(highlighted: str, window: int = 150) -> str:
    """Cut a bounded window around the first highlighted match.

    The window starts a third of its width before the match, is padded with
    `...` when it truncates the text, and wraps matched terms in `<mark>` tags.
    """

    plain_chars: List[str] = []
    spans: List[Tuple[int, int]] = []
    open_at: Optional[int] = None
    for char in highlighted:
        if char == schema.HIGHLIGHT_OPEN:
            open_at = len(plain_chars)
        elif char == schema.HIGHLIGHT_CLOSE:
            if open_at is not None:
                spans.append((open_at, len(plain_chars)))
            open_at = None
        else:
            plain_chars.append(char)
    plain = "".join(plain_chars)

    if not spans:
        return plain[:window] + ("..." if len(plain) > window else "")

    start = max(0, spans[0][0] - window // 3)
    end = min(len(plain), start + window)

    pieces: List[str] = []
    cursor = start
    for span_start, span_end in spans:
        if span_end <= start or span_start >= end:
            continue
        span_start, span_end = max(span_start, start), min(span_end, end)
        pieces.append(plain[cursor:span_start])
        pieces.append(f"<mark>{plain[span_start:span_end]}</mark>")
        cursor = span_end
    pieces.append(plain[cursor:end])

    snippet = "".join(pieces)
    if start > 0:
        snippet = "..." + snippet
    if end < len(plain):
        snippet = snippet + "..."
    return snippet


__all__ = ["DocumentStore", "FieldSnippet", "StoreMatch", "build_match_expression", "build_snippet"]
