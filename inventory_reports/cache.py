"""In-memory transaction store shared by the service layer.

Collections are keyed by name (``imports``/``orders``).  Subscribers are told
about every change.  Optimistic writes insert a placeholder under a temporary
id, then replace it with the saved record or remove it when the write fails.
"""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[str, list], None]

TEMP_PREFIX = "temp-"


class TransactionStore:
    def __init__(self) -> None:
        self._data: dict[str, list] = {}
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.RLock()
        self._temp_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Basic access
    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[list]:
        """Return a copy of the cached collection, or ``None`` when absent."""

        with self._lock:
            records = self._data.get(key)
            return list(records) if records is not None else None

    def set(self, key: str, records: Iterable[Any]) -> None:
        with self._lock:
            self._data[key] = list(records)
        self._notify(key)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one collection, or everything when *key* is ``None``."""

        with self._lock:
            keys = [key] if key is not None else list(self._data)
            for name in keys:
                self._data.pop(name, None)

    def read_through(self, key: str, loader: Callable[[], Iterable[Any]], refresh: bool = False) -> list:
        """Return the cached collection, loading it first when needed."""

        if not refresh:
            cached = self.get(key)
            if cached is not None:
                return cached
        self.set(key, loader())
        return self.get(key) or []

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *key*; the returned callable unsubscribes."""

        with self._lock:
            self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Optimistic writes
    # ------------------------------------------------------------------
    def add_placeholder(self, key: str, record: Any) -> str:
        """Insert *record* under a fresh temporary id and return that id."""

        temp_id = f"{TEMP_PREFIX}{next(self._temp_ids)}"
        with self._lock:
            self._data.setdefault(key, []).append(replace(record, id=temp_id))
        self._notify(key)
        return temp_id

    def reconcile(self, key: str, temp_id: str, record: Any) -> None:
        """Replace the placeholder *temp_id* with the saved *record*."""

        with self._lock:
            records = self._data.setdefault(key, [])
            for index, existing in enumerate(records):
                if existing.id == temp_id:
                    records[index] = record
                    break
            else:
                records.append(record)
        self._notify(key)

    def rollback(self, key: str, temp_id: str) -> None:
        with self._lock:
            records = self._data.get(key, [])
            self._data[key] = [existing for existing in records if existing.id != temp_id]
        self._notify(key)

    def optimistic_write(self, key: str, placeholder: Any, writer: Callable[[Any], Any]) -> Any:
        """Show *placeholder* immediately, then persist it with *writer*.

        The store lock is not held while *writer* runs.  On failure the
        placeholder is removed and the exception propagates.
        """

        temp_id = self.add_placeholder(key, placeholder)
        try:
            saved = writer(placeholder)
        except Exception:
            self.rollback(key, temp_id)
            raise
        self.reconcile(key, temp_id, saved)
        return saved

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _notify(self, key: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(key, []))
            snapshot = list(self._data.get(key, []))
        for listener in listeners:
            try:
                listener(key, snapshot)
            except Exception:
                logger.exception("Listener %r for %s failed", listener, key)
