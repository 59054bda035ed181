"""Volatile queue ledger for in-flight download and upload items.

Items are immutable; every status or progress change replaces the stored
value. The backing store is injected so tests (and future shared caches) can
swap it out. Entries expire after a TTL so an abandoned item cannot linger
forever.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Protocol, Union

from engine.events import utc_now

logger = logging.getLogger(__name__)

STATUS_QUEUED = "queued"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

KIND_DOWNLOAD = "download"
KIND_UPLOAD = "upload"


@dataclass(frozen=True, kw_only=True)
class _ItemFields:
    id: str
    kind: str
    source: str
    method: str | None = None
    added_at: str
    extra: dict = field(default_factory=dict)

    def to_dict(self):
        source_key = "filename" if self.kind == KIND_UPLOAD else "url"
        payload = dict(self.extra)
        payload.update(
            {
                "id": self.id,
                "kind": self.kind,
                source_key: self.source,
                "method": self.method,
                "status": self.status,
                "progress": self.progress,
                "added_at": self.added_at,
            }
        )
        return payload


@dataclass(frozen=True, kw_only=True)
class QueuedItem(_ItemFields):
    status: str = STATUS_QUEUED
    progress: float = 0


@dataclass(frozen=True, kw_only=True)
class ActiveItem(_ItemFields):
    status: str = STATUS_ACTIVE
    progress: float = 0
    started_at: str

    def to_dict(self):
        payload = super().to_dict()
        payload["started_at"] = self.started_at
        return payload


@dataclass(frozen=True, kw_only=True)
class CompletedItem(_ItemFields):
    status: str = STATUS_COMPLETED
    progress: float = 100
    completed_at: str

    def to_dict(self):
        payload = super().to_dict()
        payload["completed_at"] = self.completed_at
        return payload


@dataclass(frozen=True, kw_only=True)
class FailedItem(_ItemFields):
    status: str = STATUS_FAILED
    progress: float = 0
    error: str

    def to_dict(self):
        payload = super().to_dict()
        payload["error"] = self.error
        return payload


QueueItem = Union[QueuedItem, ActiveItem, CompletedItem, FailedItem]


def _common(item):
    return {
        "id": item.id,
        "kind": item.kind,
        "source": item.source,
        "method": item.method,
        "added_at": item.added_at,
        "extra": dict(item.extra),
    }


class LedgerStore(Protocol):
    def get(self, key): ...

    def set(self, key, value, ttl=None): ...

    def delete(self, key) -> bool: ...

    def keys(self, prefix=""): ...


class InMemoryLedgerStore:
    """Dict-backed store with per-key TTL eviction.

    Expired keys are dropped lazily on access. Insertion order is kept, and
    overwriting a key keeps its original position.
    """

    def __init__(self, default_ttl=None, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._data = {}
        self._lock = threading.RLock()

    def _expired(self, expires_at):
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                del self._data[key]
                return None
            return value

    def set(self, key, value, ttl=None):
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix=""):
        with self._lock:
            live = []
            for key in list(self._data):
                _, expires_at = self._data[key]
                if self._expired(expires_at):
                    del self._data[key]
                    continue
                if key.startswith(prefix):
                    live.append(key)
            return live


class QueueLedger:
    """Tracks queue items of one kind inside a :class:`LedgerStore`."""

    def __init__(self, store: LedgerStore, *, kind=KIND_DOWNLOAD, namespace=None, ttl=None):
        self.store = store
        self.kind = kind
        self.namespace = namespace or f"{kind}_queue"
        self.ttl = ttl
        self._lock = threading.RLock()

    def _key(self, item_id):
        return f"{self.namespace}:{item_id}"

    def _put(self, item):
        self.store.set(self._key(item.id), item, ttl=self.ttl)
        return item

    def add(self, item_id, source, *, method=None, extra=None) -> QueuedItem:
        item = QueuedItem(
            id=item_id,
            kind=self.kind,
            source=source,
            method=method,
            added_at=utc_now(),
            extra=dict(extra or {}),
        )
        with self._lock:
            if self.store.get(self._key(item_id)) is not None:
                raise ValueError(f"queue item already exists: {item_id}")
            return self._put(item)

    def get(self, item_id) -> QueueItem | None:
        return self.store.get(self._key(item_id))

    def contains(self, item_id) -> bool:
        return self.get(item_id) is not None

    def is_active(self, item_id) -> bool:
        item = self.get(item_id)
        return item is not None and item.status in (STATUS_QUEUED, STATUS_ACTIVE)

    def claim(self, item_id) -> ActiveItem | None:
        """Atomically move a queued item to active. Returns ``None`` otherwise."""
        with self._lock:
            item = self.get(item_id)
            if not isinstance(item, QueuedItem):
                return None
            return self._put(ActiveItem(**_common(item), progress=0, started_at=utc_now()))

    def update_progress(self, item_id, percent) -> QueueItem | None:
        with self._lock:
            item = self.get(item_id)
            if not isinstance(item, ActiveItem):
                return None
            try:
                value = float(percent)
            except (TypeError, ValueError):
                return item
            value = max(0.0, min(100.0, value))
            return self._put(replace(item, progress=round(value, 1)))

    def set_method(self, item_id, method) -> QueueItem | None:
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            return self._put(replace(item, method=method))

    def annotate(self, item_id, **extra) -> QueueItem | None:
        """Merge ``extra`` into the item's free-form fields. Missing ids are a no-op."""
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            merged = dict(item.extra)
            merged.update(extra)
            return self._put(replace(item, extra=merged))

    def mark_completed(self, item_id) -> CompletedItem | None:
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            return self._put(CompletedItem(**_common(item), completed_at=utc_now()))

    def mark_failed(self, item_id, error) -> FailedItem | None:
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            return self._put(
                FailedItem(**_common(item), progress=item.progress, error=str(error))
            )

    def remove(self, item_id) -> bool:
        with self._lock:
            return self.store.delete(self._key(item_id))

    def list_items(self) -> list:
        prefix = f"{self.namespace}:"
        items = []
        for key in self.store.keys(prefix):
            item = self.store.get(key)
            if item is not None:
                items.append(item)
        return items
