"""
SQLite-backed context store.

Two tables: ``documents`` (one row per file path, embedding stored as a
float32 BLOB) and ``variable_refs`` (identifier references owned by a
document).  Every write replaces a document and its references as a unit
inside one transaction.

Storage: ``.cache/codebase.db`` by default.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional

import numpy as np

from .errors import DimensionMismatch, StoreTransactionFailure, StoreUnavailable
from .models import Document, RefType, StoredDocument, VariableReference

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    path          TEXT    PRIMARY KEY NOT NULL,
    content       TEXT    NOT NULL,
    embedding     BLOB    NOT NULL,
    dimensions    INTEGER NOT NULL,
    content_hash  TEXT    NOT NULL DEFAULT '',
    language      TEXT    NOT NULL DEFAULT '',
    last_updated  TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS variable_refs (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    variable_name  TEXT    NOT NULL,
    file_path      TEXT    NOT NULL REFERENCES documents(path),
    line_number    INTEGER NOT NULL,
    ref_type       TEXT    NOT NULL
                   CHECK (ref_type IN ('declaration', 'import', 'export', 'usage')),
    source_path    TEXT    DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_var_name  ON variable_refs(variable_name);
CREATE INDEX IF NOT EXISTS idx_file_path ON variable_refs(file_path);
"""

_DOC_COLUMNS = "path, content, embedding, content_hash, language, last_updated"
_REF_COLUMNS = "variable_name, file_path, line_number, ref_type, source_path"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec: Iterable[float]) -> tuple[bytes, int]:
    """Serialise a vector to compact float32 bytes; return ``(bytes, length)``."""
    arr = np.asarray(list(vec), dtype=np.float32)
    if arr.ndim != 1 or arr.size == 0:
        raise ValueError("embedding must be a non-empty one-dimensional vector")
    if not np.all(np.isfinite(arr)):
        raise ValueError("embedding contains non-finite values")
    return arr.tobytes(), int(arr.size)


def _bytes_to_vec(buf: bytes) -> list[float]:
    """Deserialise bytes back to a vector."""
    return np.frombuffer(buf, dtype=np.float32).tolist()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        path=row["path"],
        content=row["content"],
        embedding=_bytes_to_vec(row["embedding"]),
        last_updated=row["last_updated"],
        content_hash=row["content_hash"],
        language=row["language"],
    )


def _row_to_reference(row: sqlite3.Row) -> VariableReference:
    return VariableReference(
        variable_name=row["variable_name"],
        file_path=row["file_path"],
        line_number=row["line_number"],
        ref_type=RefType(row["ref_type"]),
        source_path=row["source_path"],
    )


# ---------------------------------------------------------------------------
# ContextStore
# ---------------------------------------------------------------------------

class ContextStore:
    """Persistent document + variable reference store backed by SQLite.

    Designed for a single logical writer.  The connection is shared
    between threads but every access is serialised through a lock.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file (created if absent), or
        ``":memory:"``.

    Raises
    ------
    StoreUnavailable
        If the database cannot be opened or its schema created.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        try:
            self._init_db()
        except (sqlite3.Error, OSError) as exc:
            self.close()
            raise StoreUnavailable(f"Cannot open store at {db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create the database file, tables and indexes if missing."""
        if self._db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self._db_path)), exist_ok=True)
        # isolation_level=None: transactions are opened explicitly with BEGIN.
        conn = sqlite3.connect(
            self._db_path, check_same_thread=False, isolation_level=None, timeout=10
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        if self._db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        self._conn = conn
        conn.executescript(_SCHEMA)
        logger.debug("Connected to store: %s", self._db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Close the database connection.  Safe to call more than once."""
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable(f"Store {self._db_path} is closed")
        return self._conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._require_conn()
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Store read failed: {exc}") from exc

    @contextmanager
    def _transaction(self, path: str) -> Iterator[sqlite3.Connection]:
        """Run the body inside BEGIN/COMMIT; roll back on any failure."""
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreTransactionFailure(path, f"cannot begin: {exc}") from exc
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.debug("Rolled back transaction for %s: %s", path, exc)
                if isinstance(exc, StoreTransactionFailure):
                    raise
                raise StoreTransactionFailure(path, str(exc)) from exc

    # ------------------------------------------------------------------
    # Dimensionality
    # ------------------------------------------------------------------

    @staticmethod
    def _stored_dimensions(
        conn: sqlite3.Connection, excluding: Optional[str] = None
    ) -> Optional[int]:
        """Vector length of the stored documents, ignoring *excluding*."""
        row = conn.execute(
            "SELECT dimensions FROM documents WHERE path IS NOT ? LIMIT 1",
            (excluding,),
        ).fetchone()
        return int(row["dimensions"]) if row else None

    @property
    def dimensions(self) -> Optional[int]:
        """Vector length shared by the stored documents, or None if empty."""
        with self._read() as conn:
            return self._stored_dimensions(conn)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        path: str,
        content: str,
        embedding: Iterable[float],
        references: Iterable[VariableReference],
        *,
        content_hash: str = "",
        language: str = "",
    ) -> None:
        """Replace the document for *path* and all of its references.

        Runs as one transaction: delete old references, delete old
        document, insert new document, bulk-insert new references.

        Parameters
        ----------
        path:
            Document key.
        content:
            Full file text.
        embedding:
            Vector whose length must match the store's dimensionality.
        references:
            References owned by this document; their ``file_path`` is
            rewritten to *path*.
        content_hash:
            Hash of *content* used to skip unchanged files on re-index.
        language:
            Dialect name recorded for display.

        Raises
        ------
        DimensionMismatch
            If the vector length differs from the other stored documents.
        StoreTransactionFailure
            On any other failure; the store is left as it was.
        """
        try:
            vec_bytes, dims = _vec_to_bytes(embedding)
        except (TypeError, ValueError) as exc:
            raise StoreTransactionFailure(path, str(exc)) from exc

        with self._transaction(path) as conn:
            # The document being replaced does not pin the length.
            expected = self._stored_dimensions(conn, excluding=path)
            if expected is not None and expected != dims:
                raise DimensionMismatch(path, expected, dims)

            conn.execute("DELETE FROM variable_refs WHERE file_path = ?", (path,))
            conn.execute("DELETE FROM documents WHERE path = ?", (path,))
            conn.execute(
                "INSERT INTO documents "
                "(path, content, embedding, dimensions, content_hash, language, last_updated) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (path, content, vec_bytes, dims, content_hash, language, _now()),
            )
            conn.executemany(
                f"INSERT INTO variable_refs ({_REF_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                (
                    (
                        ref.variable_name,
                        path,
                        int(ref.line_number),
                        RefType(ref.ref_type).value,
                        ref.source_path,
                    )
                    for ref in references
                ),
            )
        logger.debug("Upserted %s (%d dims)", path, dims)

    def delete(self, path: str) -> bool:
        """Remove *path* and its references.  Returns True if it existed."""
        with self._transaction(path) as conn:
            conn.execute("DELETE FROM variable_refs WHERE file_path = ?", (path,))
            cur = conn.execute("DELETE FROM documents WHERE path = ?", (path,))
            removed = cur.rowcount > 0
        if removed:
            logger.info("Removed %s from store", path)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[StoredDocument]:
        """Return every document joined with its references, ordered by path."""
        with self._read() as conn:
            doc_rows = conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents ORDER BY path"
            ).fetchall()
            ref_rows = conn.execute(
                f"SELECT {_REF_COLUMNS} FROM variable_refs "
                "ORDER BY file_path, line_number, id"
            ).fetchall()

        refs_by_path: dict[str, list[VariableReference]] = defaultdict(list)
        for row in ref_rows:
            refs_by_path[row["file_path"]].append(_row_to_reference(row))

        return [
            StoredDocument(
                document=_row_to_document(row),
                references=refs_by_path.get(row["path"], []),
            )
            for row in doc_rows
        ]

    def get(self, path: str) -> Optional[StoredDocument]:
        """Return the stored document for *path*, or None if not indexed."""
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_DOC_COLUMNS} FROM documents WHERE path = ?", (path,)
            ).fetchone()
            if row is None:
                return None
            ref_rows = conn.execute(
                f"SELECT {_REF_COLUMNS} FROM variable_refs WHERE file_path = ? "
                "ORDER BY line_number, id",
                (path,),
            ).fetchall()
        return StoredDocument(
            document=_row_to_document(row),
            references=[_row_to_reference(r) for r in ref_rows],
        )

    def content_hash(self, path: str) -> Optional[str]:
        """Return the stored content hash for *path*, or None if absent."""
        with self._read() as conn:
            row = conn.execute(
                "SELECT content_hash FROM documents WHERE path = ?", (path,)
            ).fetchone()
        return row["content_hash"] if row else None

    def find_references(
        self,
        variable_name: str,
        ref_type: Optional[RefType] = None,
    ) -> list[VariableReference]:
        """
        Return every reference to *variable_name* across all documents.

        Useful for impact analysis: which files import, export or use a
        given identifier.
        """
        sql = f"SELECT {_REF_COLUMNS} FROM variable_refs WHERE variable_name = ?"
        params: list = [variable_name]
        if ref_type is not None:
            sql += " AND ref_type = ?"
            params.append(RefType(ref_type).value)
        sql += " ORDER BY file_path, line_number, id"
        with self._read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_reference(r) for r in rows]

    def count(self) -> int:
        """Return the number of stored documents."""
        with self._read() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM documents").fetchone()
        return row["n"]

    def stats(self) -> dict:
        """Return document/reference counts and the vector dimensionality."""
        with self._read() as conn:
            docs = conn.execute("SELECT COUNT(*) AS n FROM documents").fetchone()["n"]
            by_type = {
                row["ref_type"]: row["n"]
                for row in conn.execute(
                    "SELECT ref_type, COUNT(*) AS n FROM variable_refs GROUP BY ref_type"
                )
            }
            dims = self._stored_dimensions(conn)
        return {
            "db_path": self._db_path,
            "documents": docs,
            "references": sum(by_type.values()),
            "by_ref_type": by_type,
            "dimensions": dims,
        }
