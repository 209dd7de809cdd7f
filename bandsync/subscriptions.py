"""
Typed, cancellable live subscriptions on top of store listeners.

A subscription decodes every snapshot it receives and hands the typed value
to its callback. Deliveries are treated as projections, not events: a
snapshot whose version is not newer than the last one delivered is dropped,
so re-deliveries and out-of-order fan-out never move a consumer backwards.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from bandsync.errors import BandSyncError
from bandsync.store import DocumentStore, Filter, ListenerHandle, StoredDocument

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription(Generic[T]):
    def __init__(
        self,
        callback: Callable[[T], None],
        *,
        on_error: Optional[Callable[[BandSyncError], None]] = None,
        name: str = "subscription",
    ):
        self._callback = callback
        self._on_error = on_error
        # Deliveries are serialized by _deliver_lock; cancel only takes
        # _state_lock so it never waits on a callback in flight.
        self._deliver_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._handle: Optional[ListenerHandle] = None
        self._version: Any = None
        self._cancelled = False
        self.name = name
        self.latest: Optional[T] = None
        self.error: Optional[BandSyncError] = None

    @property
    def active(self) -> bool:
        return not self._cancelled

    def attach(self, handle: ListenerHandle) -> None:
        with self._state_lock:
            if self._cancelled:
                handle.unsubscribe()
                return
            self._handle = handle

    def deliver(self, version: Any, decode: Callable[[], T]) -> bool:
        """Decode and deliver one snapshot. Returns False if it was dropped."""
        with self._deliver_lock:
            if self._cancelled:
                return False
            if (
                self._version is not None
                and version is not None
                and version <= self._version
            ):
                return False
            try:
                value = decode()
            except BandSyncError as exc:
                logger.exception("%s: could not decode snapshot", self.name)
                self.error = exc
                if self._on_error:
                    self._on_error(exc)
                return False
            if version is not None:
                self._version = version
            self.latest = value
            self.error = None
            self._callback(value)
            return True

    def cancel(self) -> None:
        with self._state_lock:
            if self._cancelled:
                return
            self._cancelled = True
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.unsubscribe()


def subscribe_document(
    store: DocumentStore,
    collection: str,
    doc_id: str,
    decode: Callable[[StoredDocument], Optional[T]],
    callback: Callable[[Optional[T]], None],
    *,
    on_error: Optional[Callable[[BandSyncError], None]] = None,
) -> Subscription[Optional[T]]:
    subscription: Subscription[Optional[T]] = Subscription(
        callback, on_error=on_error, name=f"{collection}/{doc_id}"
    )

    def _on_snapshot(snapshot: StoredDocument) -> None:
        subscription.deliver(snapshot.version, lambda: decode(snapshot))

    subscription.attach(store.watch_document(collection, doc_id, _on_snapshot))
    return subscription


def subscribe_query(
    store: DocumentStore,
    collection: str,
    filters: Sequence[Filter],
    decode: Callable[[StoredDocument], Optional[T]],
    callback: Callable[[List[T]], None],
    *,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    on_error: Optional[Callable[[BandSyncError], None]] = None,
) -> Subscription[List[T]]:
    subscription: Subscription[List[T]] = Subscription(
        callback, on_error=on_error, name=f"{collection} query"
    )

    def _decode_all(documents: List[StoredDocument]) -> List[T]:
        decoded = (decode(doc) for doc in documents)
        return [value for value in decoded if value is not None]

    def _on_snapshot(documents: List[StoredDocument], read_version: Any) -> None:
        subscription.deliver(read_version, lambda: _decode_all(documents))

    subscription.attach(
        store.watch_query(
            collection,
            filters,
            _on_snapshot,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )
    )
    return subscription
