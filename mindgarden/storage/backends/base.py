"""
DocumentStore — abstract base for collection-oriented document stores.

All backends implement the same primitives:
  add     — insert a document, store assigns the id
  get     — fetch one document by id
  set     — create or replace a document at a known id
  update  — merge field changes into an existing document
  delete  — remove a document
  query   — equality filter plus optional single-field ordering

Two write sentinels are understood by every backend:
  SERVER_TIMESTAMP  — replaced by a store-issued timestamp that is strictly
                      increasing across all writes to this store
  Increment(n)      — added to the current numeric value inside the same
                      transaction as the rest of the update

Documents returned by get/query always carry their "id".
"""

from __future__ import annotations

import abc
import threading
from datetime import datetime, timedelta, timezone


class _ServerTimestamp:
    __slots__ = ()

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class Increment:
    """Atomic numeric increment sentinel for update()."""

    __slots__ = ("amount",)

    def __init__(self, amount: int = 1):
        self.amount = amount

    def __repr__(self) -> str:
        return f"Increment({self.amount})"


class DocumentStore(abc.ABC):
    """Abstract document store."""

    def __init__(self):
        self._ts_lock = threading.Lock()
        self._last_ts: datetime | None = None

    def server_timestamp(self) -> str:
        """Issue an ISO-8601 UTC timestamp strictly greater than the previous one."""
        with self._ts_lock:
            now = datetime.now(timezone.utc)
            if self._last_ts is not None and now <= self._last_ts:
                now = self._last_ts + timedelta(microseconds=1)
            self._last_ts = now
        return now.isoformat(timespec="microseconds")

    def _resolve_writes(self, current: dict, changes: dict) -> dict:
        """Apply sentinels in `changes` against `current`, returning plain values."""
        resolved = {}
        ts = None
        for key, value in changes.items():
            if value is SERVER_TIMESTAMP:
                # One timestamp per write so created_at == updated_at on insert
                if ts is None:
                    ts = self.server_timestamp()
                resolved[key] = ts
            elif isinstance(value, Increment):
                resolved[key] = (current.get(key) or 0) + value.amount
            else:
                resolved[key] = value
        return resolved

    @abc.abstractmethod
    def add(self, collection: str, data: dict) -> str:
        """Insert a new document and return its store-assigned id."""
        ...

    @abc.abstractmethod
    def get(self, collection: str, doc_id: str) -> dict | None:
        """Return the document or None if it does not exist."""
        ...

    @abc.abstractmethod
    def set(self, collection: str, doc_id: str, data: dict) -> None:
        """Create or fully replace a document at doc_id."""
        ...

    @abc.abstractmethod
    def update(self, collection: str, doc_id: str, changes: dict) -> bool:
        """
        Merge changes into an existing document atomically.
        Returns False if the document does not exist.
        """
        ...

    @abc.abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Deleting a missing document is not an error."""
        ...

    @abc.abstractmethod
    def query(
        self,
        collection: str,
        where: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict]:
        """Equality-filtered, optionally ordered, list of documents."""
        ...

    def close(self) -> None:
        """Release any held resources."""
        return None
