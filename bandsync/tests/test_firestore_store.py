import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, call, patch

from google.api_core import exceptions
from google.cloud.firestore_v1 import FieldFilter

from bandsync.errors import Conflict, NotFound, TransportError
from bandsync.firestore_store import FirestoreDocumentStore, _to_stored, translate_errors
from bandsync.store import DOCUMENT_ID

UPDATED = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _snapshot(doc_id, data=None, exists=True):
    snapshot = MagicMock()
    snapshot.id = doc_id
    snapshot.exists = exists
    snapshot.to_dict.return_value = data
    snapshot.update_time = UPDATED
    snapshot.create_time = UPDATED
    snapshot.read_time = UPDATED
    return snapshot


class TranslateErrorsTests(unittest.TestCase):
    def test_google_errors_are_mapped(self):
        with self.assertRaises(NotFound):
            with translate_errors():
                raise exceptions.NotFound("no document")
        with self.assertRaises(Conflict):
            with translate_errors():
                raise exceptions.AlreadyExists("exists")
        with self.assertRaises(TransportError) as ctx:
            with translate_errors():
                raise exceptions.ServiceUnavailable("down")
        self.assertTrue(ctx.exception.retryable)

    def test_exhausted_transaction_is_retryable(self):
        with self.assertRaises(TransportError):
            with translate_errors():
                raise ValueError("Failed to commit transaction in 5 attempts.")

    def test_other_value_errors_propagate(self):
        with self.assertRaises(ValueError):
            with translate_errors():
                raise ValueError("bad path")


class ToStoredTests(unittest.TestCase):
    def test_existing_document(self):
        stored = _to_stored("groups", _snapshot("g1", {"name": "Band"}))
        self.assertTrue(stored.exists)
        self.assertEqual(stored.data, {"name": "Band"})
        self.assertEqual(stored.version, UPDATED)

    def test_missing_document(self):
        stored = _to_stored("groups", _snapshot("g1", exists=False))
        self.assertFalse(stored.exists)
        self.assertIsNone(stored.data)
        self.assertEqual(stored.version, UPDATED)


class FirestoreDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.query = MagicMock()
        self.query.where.return_value = self.query
        self.query.order_by.return_value = self.query
        self.query.limit.return_value = self.query
        self.client.collection.return_value = self.query
        self.store = FirestoreDocumentStore(self.client)

    def test_get_reads_the_document(self):
        self.query.document.return_value.get.return_value = _snapshot("u1", {"email": "a@b.c"})
        stored = self.store.get("users", "u1")
        self.client.collection.assert_called_with("users")
        self.query.document.assert_called_with("u1")
        self.assertEqual(stored.data, {"email": "a@b.c"})

    def test_update_translates_missing_document(self):
        self.query.document.return_value.update.side_effect = exceptions.NotFound("gone")
        with self.assertRaises(NotFound):
            self.store.update("users", "u1", {"name": "x"})

    def test_query_builds_field_filters(self):
        self.query.stream.return_value = [_snapshot("c1", {"name": "Band"})]
        docs = self.store.query(
            "chats",
            [("participants", "array_contains", "ann")],
            order_by="lastMessageTime",
            descending=True,
            limit=10,
        )
        self.assertEqual([d.id for d in docs], ["c1"])
        field_filter = self.query.where.call_args.kwargs["filter"]
        self.assertIsInstance(field_filter, FieldFilter)
        self.assertEqual(field_filter.field_path, "participants")
        self.assertEqual(field_filter.op_string, "array_contains")
        self.assertEqual(field_filter.value, "ann")
        self.query.order_by.assert_called_once()
        self.assertEqual(self.query.order_by.call_args.args, ("lastMessageTime",))
        self.query.limit.assert_called_once_with(10)

    def test_document_id_filters_use_references(self):
        self.query.stream.return_value = []
        self.store.query("users", [(DOCUMENT_ID, "in", ["a", "b"])])
        field_filter = self.query.where.call_args.kwargs["filter"]
        self.assertEqual(len(field_filter.value), 2)
        self.assertEqual(self.query.document.call_args_list[-2:], [call("a"), call("b")])

    def test_batch_commit_failure_is_transport_error(self):
        self.client.batch.return_value.commit.side_effect = exceptions.ServiceUnavailable(
            "down"
        )
        batch = self.store.batch()
        batch.set("messages", "m1", {"text": "hi"})
        batch.update("chats", "c1", {"lastMessage": "hi"})
        with self.assertRaises(TransportError):
            batch.commit()
        writer = self.client.batch.return_value
        writer.set.assert_called_once()
        writer.update.assert_called_once()

    def test_transaction_reads_through_the_transaction(self):
        transaction = self.client.transaction.return_value
        ref = self.query.document.return_value
        ref.get.return_value = _snapshot("g1", {"name": "Band"})

        def _txn(txn):
            doc = txn.get("groups", "g1")
            txn.update("groups", "g1", {"name": "Renamed"})
            return doc.data["name"]

        with patch("bandsync.firestore_store.firestore.transactional", new=lambda fn: fn):
            result = self.store.run_transaction(_txn)
        self.assertEqual(result, "Band")
        self.client.transaction.assert_called_once_with(max_attempts=5)
        ref.get.assert_called_once_with(transaction=transaction)
        transaction.update.assert_called_once_with(ref, {"name": "Renamed"})


if __name__ == "__main__":
    unittest.main()
