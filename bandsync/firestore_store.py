"""
Firestore-backed implementation of the document store.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Sequence, TypeVar

from firebase_admin import firestore
from google.api_core import exceptions
from google.cloud.firestore_v1 import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from bandsync.errors import Conflict, InvalidArgument, NotFound, TransportError
from bandsync.store import (
    DOCUMENT_ID,
    DocumentCallback,
    Filter,
    QueryCallback,
    StoredDocument,
    Transaction,
    validate_filters,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXCEEDED_ATTEMPTS_PREFIX = "Failed to commit transaction"


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map Google API errors onto the service error taxonomy."""
    try:
        yield
    except exceptions.NotFound as exc:
        raise NotFound(str(exc.message or exc)) from exc
    except exceptions.AlreadyExists as exc:
        raise Conflict(str(exc.message or exc)) from exc
    except exceptions.InvalidArgument as exc:
        raise InvalidArgument(str(exc.message or exc)) from exc
    except (exceptions.GoogleAPICallError, exceptions.RetryError) as exc:
        logger.warning("Firestore call failed: %s", exc)
        raise TransportError(f"Firestore unavailable: {exc}") from exc
    except ValueError as exc:
        if str(exc).startswith(_EXCEEDED_ATTEMPTS_PREFIX):
            logger.warning("Firestore transaction gave up: %s", exc)
            raise TransportError(str(exc)) from exc
        raise


def _to_stored(collection: str, snapshot: Any) -> StoredDocument:
    exists = bool(getattr(snapshot, "exists", False))
    return StoredDocument(
        collection=collection,
        id=snapshot.id,
        data=snapshot.to_dict() if exists else None,
        version=snapshot.update_time if exists else getattr(snapshot, "read_time", None),
        create_time=snapshot.create_time if exists else None,
    )


class _FirestoreWrites:
    def __init__(self, store: "FirestoreDocumentStore", writer: Any):
        self._store = store
        self._writer = writer

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        self._writer.set(self._store._ref(collection, doc_id), data, merge=merge)

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        self._writer.update(self._store._ref(collection, doc_id), data)

    def delete(self, collection: str, doc_id: str) -> None:
        self._writer.delete(self._store._ref(collection, doc_id))


class FirestoreBatch(_FirestoreWrites):
    def commit(self) -> None:
        with translate_errors():
            self._writer.commit()


class FirestoreTransaction(_FirestoreWrites):
    def get(self, collection: str, doc_id: str) -> StoredDocument:
        snapshot = self._store._ref(collection, doc_id).get(transaction=self._writer)
        return _to_stored(collection, snapshot)


class FirestoreDocumentStore:
    """
    Document store backed by the ``firebase_admin`` Firestore client.

    Pass ``client`` to reuse an existing client (or a mock in tests);
    otherwise the default app's client is used.
    """

    def __init__(self, client: Any = None, *, max_attempts: int = 5):
        self._db = client if client is not None else firestore.client()
        self.max_attempts = max_attempts

    def _ref(self, collection: str, doc_id: str):
        return self._db.collection(collection).document(doc_id)

    def new_id(self, collection: str) -> str:
        return self._db.collection(collection).document().id

    def get(self, collection: str, doc_id: str) -> StoredDocument:
        with translate_errors():
            snapshot = self._ref(collection, doc_id).get()
        return _to_stored(collection, snapshot)

    def add(self, collection: str, data: dict) -> str:
        doc_ref = self._db.collection(collection).document()
        with translate_errors():
            doc_ref.set(data)
        return doc_ref.id

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        with translate_errors():
            self._ref(collection, doc_id).set(data, merge=merge)

    def update(self, collection: str, doc_id: str, data: dict) -> None:
        with translate_errors():
            self._ref(collection, doc_id).update(data)

    def delete(self, collection: str, doc_id: str) -> None:
        with translate_errors():
            self._ref(collection, doc_id).delete()

    def _build_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        order_by: Optional[str],
        descending: bool,
        limit: Optional[int],
    ):
        validate_filters(filters)
        query = self._db.collection(collection)
        for field_path, op, value in filters:
            if field_path == DOCUMENT_ID:
                field_path = FieldPath.document_id()
                if op == "in":
                    value = [self._ref(collection, doc_id) for doc_id in value]
                else:
                    value = self._ref(collection, value)
            query = query.where(filter=FieldFilter(field_path, op, value))
        if order_by:
            direction = (
                firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            )
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return query

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        query = self._build_query(collection, filters, order_by, descending, limit)
        with translate_errors():
            return [_to_stored(collection, doc) for doc in query.stream()]

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        transaction = self._db.transaction(max_attempts=self.max_attempts)

        @firestore.transactional
        def _run(transaction):
            return fn(FirestoreTransaction(self, transaction))

        with translate_errors():
            return _run(transaction)

    def batch(self) -> FirestoreBatch:
        return FirestoreBatch(self, self._db.batch())

    def watch_document(
        self, collection: str, doc_id: str, callback: DocumentCallback
    ):
        def _on_snapshot(doc_snapshots, changes, read_time):
            if not doc_snapshots:
                callback(StoredDocument(collection, doc_id, None, version=read_time))
                return
            for snapshot in doc_snapshots:
                callback(_to_stored(collection, snapshot))

        return self._ref(collection, doc_id).on_snapshot(_on_snapshot)

    def watch_query(
        self,
        collection: str,
        filters: Sequence[Filter],
        callback: QueryCallback,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ):
        query = self._build_query(collection, filters, order_by, descending, limit)

        def _on_snapshot(doc_snapshots, changes, read_time):
            callback([_to_stored(collection, doc) for doc in doc_snapshots], read_time)

        return query.on_snapshot(_on_snapshot)
