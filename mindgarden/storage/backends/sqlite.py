"""
SQLite document store.
Every collection lives in one table of JSON documents. Equality filters and
ordering go through json_extract. Single portable file, one transaction per
call, and update() holds a write lock across its read-modify-write so
Increment and SERVER_TIMESTAMP resolve atomically.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

from mindgarden.errors import StoreFailure

from .base import DocumentStore

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_documents_owner
    ON documents(collection, json_extract(data, '$.owner_id'));
CREATE INDEX IF NOT EXISTS idx_documents_conversation
    ON documents(collection, json_extract(data, '$.conversation_id'));
"""

_FIELD_RE = re.compile(r"^\w+$")


def _field(name: str) -> str:
    """Validate a field name before it is spliced into a json path."""
    if not _FIELD_RE.match(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return f"$.{name}"


class SQLiteDocumentStore(DocumentStore):
    """SQLite-backed document store."""

    def __init__(self, path: str = "./data/mindgarden.db", **_kwargs):
        super().__init__()
        self.db_path = Path(path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite document store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StoreFailure(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreFailure(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _row_to_doc(row) -> dict:
        doc = json.loads(row["data"])
        doc["id"] = row["id"]
        return doc

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def get(self, collection: str, doc_id: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        return self._row_to_doc(row) if row else None

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        payload = json.dumps(self._resolve_writes({}, data))
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO documents (collection, id, data) VALUES (?, ?, ?)",
                (collection, doc_id, payload),
            )
        logger.debug("Stored %s/%s", collection, doc_id)

    def update(self, collection: str, doc_id: str, changes: dict) -> bool:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
            if row is None:
                return False
            current = json.loads(row["data"])
            current.update(self._resolve_writes(current, changes))
            conn.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(current), collection, doc_id),
            )
        return True

    def delete(self, collection: str, doc_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )

    def query(
        self,
        collection: str,
        where: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict]:
        sql = "SELECT id, data FROM documents WHERE collection = ?"
        params: list = [collection]
        for key, value in (where or {}).items():
            sql += " AND json_extract(data, ?) = ?"
            params.extend([_field(key), value])
        if order_by:
            sql += f" ORDER BY json_extract(data, '{_field(order_by)}')"
            sql += " DESC" if descending else " ASC"
        else:
            sql += " ORDER BY rowid"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_doc(r) for r in rows]

    def get_stats(self) -> dict:
        """Document counts per collection."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) AS n FROM documents GROUP BY collection"
            ).fetchall()
        return {row["collection"]: row["n"] for row in rows}
