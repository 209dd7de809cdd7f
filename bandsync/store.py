"""
Document store abstraction with an in-memory implementation.

The interface mirrors the subset of Firestore the services rely on: document
CRUD, field transforms (``ArrayUnion``, ``ArrayRemove``, ``DELETE_FIELD``,
``SERVER_TIMESTAMP``), equality / array-contains / "in" queries, atomic write
batches, optimistic multi-document transactions and live listeners.

Writes use Firestore's own sentinel objects so the same service code runs
against both implementations.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from google.cloud.firestore_v1 import (
    ArrayRemove,
    ArrayUnion,
    DELETE_FIELD,
    SERVER_TIMESTAMP,
)

from bandsync.errors import InvalidArgument, NotFound, TransportError
from bandsync.firebase_constants import MAX_IN_FILTER_VALUES

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (field, op, value); op is one of "==", "array_contains", "in".
# The field "__name__" addresses the document id.
Filter = Tuple[str, str, Any]
DOCUMENT_ID = "__name__"
SUPPORTED_OPS = ("==", "array_contains", "in")


@dataclass(frozen=True)
class StoredDocument:
    """A point-in-time read of one document."""

    collection: str
    id: str
    data: Optional[dict]
    # Comparable marker of the write that produced this state.
    version: Any = None
    create_time: Optional[datetime] = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, key: str, default: Any = None) -> Any:
        return (self.data or {}).get(key, default)


class Transaction(Protocol):
    """All reads must happen before the first write."""

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        ...

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...


class WriteBatch(Protocol):
    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def commit(self) -> None:
        ...


class ListenerHandle(Protocol):
    def unsubscribe(self) -> None:
        ...


DocumentCallback = Callable[[StoredDocument], None]
QueryCallback = Callable[[List[StoredDocument], Any], None]


class DocumentStore(Protocol):
    """Interface for document database access."""

    def new_id(self, collection: str) -> str:
        ...

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        ...

    def add(self, collection: str, data: dict) -> str:
        ...

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        ...

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        ...

    def batch(self) -> WriteBatch:
        ...

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ) -> ListenerHandle:
        ...

    def watch_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        callback: QueryCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> ListenerHandle:
        ...


def validate_filters(filters: Iterable[Filter]) -> None:
    for field_path, op, value in filters:
        if op not in SUPPORTED_OPS:
            raise InvalidArgument(f"Unsupported query operator: {op}")
        if op == "in":
            if not isinstance(value, (list, tuple)) or not value:
                raise InvalidArgument("'in' filters need a non-empty list")
            if len(value) > MAX_IN_FILTER_VALUES:
                raise InvalidArgument(
                    f"'in' filters accept at most {MAX_IN_FILTER_VALUES} values"
                )


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

_MISSING = object()


def _lookup(data: dict, path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _resolve_value(current: Any, value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, ArrayUnion):
        existing = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in existing:
                existing.append(item)
        return existing
    if isinstance(value, ArrayRemove):
        existing = list(current) if isinstance(current, list) else []
        return [item for item in existing if item not in value.values]
    if isinstance(value, dict):
        base = current if isinstance(current, dict) else {}
        return {
            k: _resolve_value(base.get(k, _MISSING), v, now)
            for k, v in value.items()
            if v is not DELETE_FIELD
        }
    return copy.deepcopy(value)


def _apply_fields(target: dict, data: dict, now: datetime, *, dotted: bool) -> None:
    for key, value in data.items():
        parts = key.split(".") if dotted else [key]
        parent = target
        for part in parts[:-1]:
            parent = parent.setdefault(part, {})
        leaf = parts[-1]
        if value is DELETE_FIELD:
            parent.pop(leaf, None)
            continue
        parent[leaf] = _resolve_value(parent.get(leaf, _MISSING), value, now)


def _merge(target: dict, data: dict, now: datetime) -> None:
    for key, value in data.items():
        if value is DELETE_FIELD:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value, now)
        else:
            target[key] = _resolve_value(target.get(key, _MISSING), value, now)


def _matches(doc_id: str, data: dict, filters: Sequence[Filter]) -> bool:
    for field_path, op, value in filters:
        actual = doc_id if field_path == DOCUMENT_ID else _lookup(data, field_path)
        if op == "==":
            if actual is _MISSING or actual != value:
                return False
        elif op == "array_contains":
            if not isinstance(actual, list) or value not in actual:
                return False
        elif op == "in":
            if actual is _MISSING or actual not in value:
                return False
    return True


@dataclass
class _Write:
    kind: str  # "set", "merge", "update", "delete"
    collection: str
    doc_id: str
    data: Optional[dict] = None


@dataclass
class _Record:
    data: Optional[dict]
    version: int
    create_time: Optional[datetime]


class _Contention(Exception):
    pass


@dataclass
class _Watcher:
    callback: Callable[..., None]
    collection: str
    doc_id: Optional[str] = None
    filters: Sequence[Filter] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None
    active: bool = True


@dataclass
class _InMemoryHandle:
    store: "InMemoryDocumentStore"
    watcher: _Watcher

    def unsubscribe(self) -> None:
        self.store._remove_watcher(self.watcher)


@dataclass
class _InMemoryBatch:
    store: "InMemoryDocumentStore"
    writes: List[_Write] = field(default_factory=list)
    committed: bool = False

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self.writes.append(_Write("merge" if merge else "set", collection, doc_id, data))

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        self.writes.append(_Write("update", collection, doc_id, data))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(_Write("delete", collection, doc_id))

    def commit(self) -> None:
        if self.committed:
            raise InvalidArgument("Batch already committed")
        self.committed = True
        self.store._commit(self.writes)


class _InMemoryTransaction(_InMemoryBatch):
    def __init__(self, store: "InMemoryDocumentStore"):
        super().__init__(store=store)
        self.reads: dict[tuple[str, str], int] = {}

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        if self.writes:
            raise InvalidArgument("Transactions must read before they write")
        snapshot = self.store.get(collection, doc_id)
        self.reads.setdefault((collection, doc_id), snapshot.version)
        return snapshot


class InMemoryDocumentStore:
    """
    Thread-safe document store for development and tests.

    Every committed write bumps a global clock; a document's ``version`` is
    the clock value of its last write (kept for deleted documents too).
    Transactions record the versions they read and commit only if none of
    them moved, retrying the callback otherwise.
    """

    def __init__(self, *, max_attempts: int = 5):
        self.max_attempts = max_attempts
        self._lock = threading.RLock()
        self._docs: dict[tuple[str, str], _Record] = {}
        self._clock = 0
        self._watchers: List[_Watcher] = []

    # Reads ----------------------------------------------------------------

    def new_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        with self._lock:
            return self._snapshot(collection, doc_id)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        validate_filters(filters)
        with self._lock:
            return self._run_query(collection, filters, order_by, descending, limit)

    # Writes ---------------------------------------------------------------

    def add(self, collection: str, data: dict) -> str:
        doc_id = self.new_id(collection)
        self._commit([_Write("set", collection, doc_id, data)])
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._commit([_Write("merge" if merge else "set", collection, doc_id, data)])

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        self._commit([_Write("update", collection, doc_id, data)])

    def delete(self, collection: str, doc_id: str) -> None:
        self._commit([_Write("delete", collection, doc_id)])

    def batch(self) -> _InMemoryBatch:
        return _InMemoryBatch(store=self)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            transaction = _InMemoryTransaction(self)
            result = fn(transaction)
            try:
                self._commit(transaction.writes, expected=transaction.reads)
                return result
            except _Contention:
                logger.warning(
                    "Transaction contention, retrying (attempt %d/%d)",
                    attempt,
                    self.max_attempts,
                )
        raise TransportError(
            f"Failed to commit transaction in {self.max_attempts} attempts"
        )

    # Listeners ------------------------------------------------------------

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ) -> _InMemoryHandle:
        watcher = _Watcher(callback=callback, collection=collection, doc_id=doc_id)
        with self._lock:
            self._watchers.append(watcher)
            snapshot = self._snapshot(collection, doc_id)
        callback(snapshot)
        return _InMemoryHandle(self, watcher)

    def watch_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        callback: QueryCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> _InMemoryHandle:
        validate_filters(filters)
        watcher = _Watcher(
            callback=callback,
            collection=collection,
            filters=list(filters),
            order_by=order_by,
            descending=descending,
            limit=limit,
        )
        with self._lock:
            self._watchers.append(watcher)
            docs = self._run_query(collection, filters, order_by, descending, limit)
            read_version = self._clock
        callback(docs, read_version)
        return _InMemoryHandle(self, watcher)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self._docs.clear()
            self._watchers.clear()

    # Internals ------------------------------------------------------------

    def _remove_watcher(self, watcher: _Watcher) -> None:
        with self._lock:
            watcher.active = False
            if watcher in self._watchers:
                self._watchers.remove(watcher)

    def _snapshot(self, collection: str, doc_id: str) -> StoredDocument:
        record = self._docs.get((collection, doc_id))
        if record is None:
            return StoredDocument(collection, doc_id, None, version=0)
        return StoredDocument(
            collection,
            doc_id,
            copy.deepcopy(record.data),
            version=record.version,
            create_time=record.create_time,
        )

    def _run_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ) -> List[StoredDocument]:
        results = [
            self._snapshot(coll, doc_id)
            for (coll, doc_id), record in self._docs.items()
            if coll == collection
            and record.data is not None
            and _matches(doc_id, record.data, filters)
        ]
        if order_by:
            # Firestore drops documents that lack the ordering field.
            results = [
                doc for doc in results if _lookup(doc.data, order_by) not in (_MISSING, None)
            ]
            results.sort(key=lambda doc: _lookup(doc.data, order_by), reverse=descending)
        else:
            results.sort(key=lambda doc: doc.id)
        if limit is not None:
            results = results[:limit]
        return results

    def _commit(
        self,
        writes: Sequence[_Write],
        expected: Optional[dict[tuple[str, str], int]] = None,
    ) -> None:
        with self._lock:
            for key, version in (expected or {}).items():
                current = self._docs.get(key)
                if (current.version if current else 0) != version:
                    raise _Contention()
            if not writes:
                return
            now = datetime.now(timezone.utc)
            staged: dict[tuple[str, str], Optional[dict]] = {}
            for write in writes:
                key = (write.collection, write.doc_id)
                if key in staged:
                    current = staged[key]
                else:
                    record = self._docs.get(key)
                    current = copy.deepcopy(record.data) if record else None
                staged[key] = self._stage(write, current, now)
            self._clock += 1
            for key, data in staged.items():
                record = self._docs.get(key)
                create_time = record.create_time if record and record.data is not None else None
                if data is not None and create_time is None:
                    create_time = now
                self._docs[key] = _Record(data=data, version=self._clock, create_time=create_time)
            watchers = list(self._watchers)
        self._notify(watchers, set(staged))

    @staticmethod
    def _stage(write: _Write, current: Optional[dict], now: datetime) -> Optional[dict]:
        if write.kind == "delete":
            return None
        if write.kind == "set":
            target: dict = {}
            _apply_fields(target, write.data or {}, now, dotted=False)
            return target
        if write.kind == "merge":
            target = current if current is not None else {}
            _merge(target, write.data or {}, now)
            return target
        if current is None:
            raise NotFound(f"No document to update: {write.collection}/{write.doc_id}")
        _apply_fields(current, write.data or {}, now, dotted=True)
        return current

    def _notify(self, watchers: Sequence[_Watcher], changed: set) -> None:
        changed_collections = {collection for collection, _ in changed}
        for watcher in watchers:
            if not watcher.active:
                continue
            if watcher.doc_id is not None:
                if (watcher.collection, watcher.doc_id) in changed:
                    watcher.callback(self.get(watcher.collection, watcher.doc_id))
            elif watcher.collection in changed_collections:
                with self._lock:
                    docs = self._run_query(
                        watcher.collection,
                        watcher.filters,
                        watcher.order_by,
                        watcher.descending,
                        watcher.limit,
                    )
                    read_version = self._clock
                watcher.callback(docs, read_version)
