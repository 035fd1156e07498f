"""
In-process document store.

Dict-backed, guarded by a single lock. Used by tests and as the stand-in
store when no persistent backend is configured.
"""

from __future__ import annotations

import copy
import logging
import threading
from uuid import uuid4

from .base import DocumentStore

logger = logging.getLogger(__name__)


class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory document store."""

    def __init__(self, **_kwargs):
        super().__init__()
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, dict]] = {}

    def _coll(self, collection: str) -> dict[str, dict]:
        return self._collections.setdefault(collection, {})

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid4().hex
        with self._lock:
            self._coll(collection)[doc_id] = self._resolve_writes({}, data)
        return doc_id

    def get(self, collection: str, doc_id: str) -> dict | None:
        with self._lock:
            doc = self._coll(collection).get(doc_id)
            if doc is None:
                return None
            return {**copy.deepcopy(doc), "id": doc_id}

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        with self._lock:
            self._coll(collection)[doc_id] = self._resolve_writes({}, data)

    def update(self, collection: str, doc_id: str, changes: dict) -> bool:
        with self._lock:
            coll = self._coll(collection)
            current = coll.get(doc_id)
            if current is None:
                return False
            current.update(self._resolve_writes(current, changes))
        return True

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._coll(collection).pop(doc_id, None)

    def query(
        self,
        collection: str,
        where: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict]:
        where = where or {}
        with self._lock:
            hits = [
                {**copy.deepcopy(doc), "id": doc_id}
                for doc_id, doc in self._coll(collection).items()
                if all(doc.get(k) == v for k, v in where.items())
            ]
        if order_by:
            hits.sort(key=lambda d: d.get(order_by) or "", reverse=descending)
        return hits

    def __repr__(self) -> str:
        sizes = {name: len(docs) for name, docs in self._collections.items()}
        return f"<MemoryDocumentStore {sizes}>"
