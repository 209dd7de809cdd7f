import unittest
from datetime import datetime

from google.cloud.firestore_v1 import ArrayRemove, ArrayUnion, DELETE_FIELD, SERVER_TIMESTAMP

from bandsync.errors import InvalidArgument, NotFound, TransportError
from bandsync.store import DOCUMENT_ID, InMemoryDocumentStore


class InMemoryDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore(max_attempts=3)

    def test_set_get_and_missing_documents(self):
        self.store.set("groups", "g1", {"name": "Band", "members": ["a"]})
        doc = self.store.get("groups", "g1")
        self.assertTrue(doc.exists)
        self.assertEqual(doc.get("name"), "Band")
        self.assertIsNotNone(doc.create_time)

        missing = self.store.get("groups", "nope")
        self.assertFalse(missing.exists)
        self.assertEqual(missing.version, 0)

    def test_returned_data_is_a_copy(self):
        self.store.set("groups", "g1", {"members": ["a"]})
        self.store.get("groups", "g1").data["members"].append("b")
        self.assertEqual(self.store.get("groups", "g1").get("members"), ["a"])

    def test_field_transforms(self):
        self.store.set(
            "groups",
            "g1",
            {"members": ["a"], "pendingMembers": ["b", "c"], "createdAt": SERVER_TIMESTAMP},
        )
        self.assertIsInstance(self.store.get("groups", "g1").get("createdAt"), datetime)

        self.store.update(
            "groups",
            "g1",
            {
                "members": ArrayUnion(["a", "b"]),
                "pendingMembers": ArrayRemove(["b"]),
                "settings.allowGuestAccess": True,
            },
        )
        doc = self.store.get("groups", "g1")
        self.assertEqual(doc.get("members"), ["a", "b"])
        self.assertEqual(doc.get("pendingMembers"), ["c"])
        self.assertEqual(doc.get("settings"), {"allowGuestAccess": True})

        self.store.update("groups", "g1", {"pendingMembers": DELETE_FIELD})
        self.assertNotIn("pendingMembers", self.store.get("groups", "g1").data)

    def test_merge_keeps_other_fields(self):
        self.store.set("users", "u1", {"name": "Ann", "settings": {"a": 1, "b": 2}})
        self.store.set("users", "u1", {"settings": {"b": 3}}, merge=True)
        self.assertEqual(
            self.store.get("users", "u1").data,
            {"name": "Ann", "settings": {"a": 1, "b": 3}},
        )

    def test_update_missing_document_raises(self):
        with self.assertRaises(NotFound):
            self.store.update("groups", "missing", {"name": "x"})

    def test_versions_increase_with_every_write(self):
        self.store.set("groups", "g1", {"name": "a"})
        first = self.store.get("groups", "g1").version
        self.store.update("groups", "g1", {"name": "b"})
        second = self.store.get("groups", "g1").version
        self.assertGreater(second, first)
        self.store.delete("groups", "g1")
        self.assertGreater(self.store.get("groups", "g1").version, second)

    def test_queries(self):
        self.store.set("users", "u1", {"groupId": "g", "tags": ["x"], "n": 2})
        self.store.set("users", "u2", {"groupId": "g", "tags": ["y"], "n": 1})
        self.store.set("users", "u3", {"groupId": "h", "tags": ["x"]})

        same_group = self.store.query("users", [("groupId", "==", "g")])
        self.assertEqual([d.id for d in same_group], ["u1", "u2"])

        tagged = self.store.query("users", [("tags", "array_contains", "x")])
        self.assertEqual([d.id for d in tagged], ["u1", "u3"])

        by_id = self.store.query("users", [(DOCUMENT_ID, "in", ["u3", "u1", "zz"])])
        self.assertEqual(sorted(d.id for d in by_id), ["u1", "u3"])

        # Documents without the ordering field are left out.
        ordered = self.store.query("users", order_by="n", descending=True, limit=5)
        self.assertEqual([d.id for d in ordered], ["u1", "u2"])

        limited = self.store.query("users", order_by="n", limit=1)
        self.assertEqual([d.id for d in limited], ["u2"])

    def test_in_filter_limits(self):
        with self.assertRaises(InvalidArgument):
            self.store.query("users", [(DOCUMENT_ID, "in", [str(i) for i in range(11)])])
        with self.assertRaises(InvalidArgument):
            self.store.query("users", [(DOCUMENT_ID, "in", [])])
        with self.assertRaises(InvalidArgument):
            self.store.query("users", [("name", ">", "a")])

    def test_batch_is_all_or_nothing(self):
        self.store.set("groups", "g1", {"name": "a"})
        batch = self.store.batch()
        batch.update("groups", "g1", {"name": "b"})
        batch.update("groups", "missing", {"name": "c"})
        with self.assertRaises(NotFound):
            batch.commit()
        self.assertEqual(self.store.get("groups", "g1").get("name"), "a")

    def test_transaction_commits(self):
        self.store.set("counters", "c", {"value": 1})

        def _increment(transaction):
            current = transaction.get("counters", "c").get("value")
            transaction.update("counters", "c", {"value": current + 1})
            return current + 1

        self.assertEqual(self.store.run_transaction(_increment), 2)
        self.assertEqual(self.store.get("counters", "c").get("value"), 2)

    def test_transaction_retries_on_contention(self):
        self.store.set("counters", "c", {"value": 1})
        attempts = []

        def _increment(transaction):
            current = transaction.get("counters", "c").get("value")
            attempts.append(current)
            if len(attempts) == 1:
                # A concurrent writer sneaks in between read and commit.
                self.store.update("counters", "c", {"value": 10})
            transaction.update("counters", "c", {"value": current + 1})

        self.store.run_transaction(_increment)
        self.assertEqual(attempts, [1, 10])
        self.assertEqual(self.store.get("counters", "c").get("value"), 11)

    def test_transaction_gives_up_after_max_attempts(self):
        self.store.set("counters", "c", {"value": 1})

        def _always_contended(transaction):
            current = transaction.get("counters", "c").get("value")
            self.store.update("counters", "c", {"value": current + 100})
            transaction.update("counters", "c", {"value": current + 1})

        with self.assertRaises(TransportError) as ctx:
            self.store.run_transaction(_always_contended)
        self.assertTrue(ctx.exception.retryable)

    def test_transaction_errors_propagate_without_writes(self):
        self.store.set("counters", "c", {"value": 1})

        def _fail(transaction):
            transaction.get("counters", "c")
            raise NotFound("nothing here")

        with self.assertRaises(NotFound):
            self.store.run_transaction(_fail)
        self.assertEqual(self.store.get("counters", "c").get("value"), 1)

    def test_transaction_reads_must_precede_writes(self):
        def _bad(transaction):
            transaction.set("counters", "a", {"value": 1})
            transaction.get("counters", "b")

        with self.assertRaises(InvalidArgument):
            self.store.run_transaction(_bad)

    def test_document_watch(self):
        seen = []
        handle = self.store.watch_document("groups", "g1", seen.append)
        self.assertEqual(len(seen), 1)
        self.assertFalse(seen[0].exists)

        self.store.set("groups", "g1", {"name": "a"})
        self.store.set("groups", "other", {"name": "b"})
        self.assertEqual(len(seen), 2)
        self.assertEqual(seen[1].get("name"), "a")

        handle.unsubscribe()
        self.store.update("groups", "g1", {"name": "c"})
        self.assertEqual(len(seen), 2)

    def test_query_watch(self):
        seen = []
        handle = self.store.watch_query(
            "messages",
            [("chatId", "==", "c1")],
            lambda docs, version: seen.append(([d.id for d in docs], version)),
            order_by="timestamp",
        )
        self.assertEqual(seen[0][0], [])
        self.store.set("messages", "m1", {"chatId": "c1", "timestamp": SERVER_TIMESTAMP})
        self.assertEqual(seen[-1][0], ["m1"])
        self.assertGreater(seen[-1][1], seen[0][1])
        handle.unsubscribe()
        self.store.set("messages", "m2", {"chatId": "c1", "timestamp": SERVER_TIMESTAMP})
        self.assertEqual(len(seen), 2)


if __name__ == "__main__":
    unittest.main()
