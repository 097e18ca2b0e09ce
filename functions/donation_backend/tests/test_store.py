import unittest
from datetime import datetime, timedelta, timezone

from donation_backend.errors import NotFound
from donation_backend.store import (
    Filter,
    InMemoryDirectoryStore,
    SqlDirectoryStore,
)


class DirectoryStoreContract:
    """Behaviour every DirectoryStore implementation shares."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_set_get_and_delete(self):
        self.store.set("users", "u1", {"email": "a@example.com", "role": "Donor"})

        doc = self.store.get("users", "u1")
        self.assertEqual(doc.id, "u1")
        self.assertEqual(doc.data["role"], "Donor")
        self.assertEqual(doc.to_json(), {"id": "u1", "email": "a@example.com", "role": "Donor"})

        self.store.delete("users", "u1")
        self.assertIsNone(self.store.get("users", "u1"))

    def test_update_merges_fields(self):
        self.store.set("users", "u1", {"email": "a@example.com", "status": "pending"})
        self.store.update("users", "u1", {"status": "approved"})
        self.assertEqual(
            self.store.get("users", "u1").data,
            {"email": "a@example.com", "status": "approved"},
        )

    def test_update_missing_document_raises(self):
        with self.assertRaises(NotFound):
            self.store.update("users", "missing", {"status": "approved"})

    def test_add_assigns_ids(self):
        first = self.store.add("donations", {"item": "Rice"})
        second = self.store.add("donations", {"item": "Beans"})
        self.assertNotEqual(first, second)
        self.assertEqual(self.store.get("donations", second).data["item"], "Beans")

    def test_query_filters_and_orders(self):
        now = datetime.now(timezone.utc)
        self.store.set("donations", "old", {"userId": "u1", "timestamp": now - timedelta(days=1)})
        self.store.set("donations", "new", {"userId": "u1", "timestamp": now})
        self.store.set("donations", "other", {"userId": "u2", "timestamp": now})
        self.store.set("donations", "undated", {"userId": "u1"})

        docs = self.store.query(
            "donations",
            filters=[Filter("userId", "==", "u1")],
            order_by="timestamp",
            descending=True,
        )

        self.assertEqual([doc.id for doc in docs], ["new", "old", "undated"])
        self.assertEqual(docs[0].data["timestamp"], now)

    def test_query_limit_and_range(self):
        for quantity in (1, 5, 10):
            self.store.add("donations", {"quantity": quantity})

        docs = self.store.query(
            "donations",
            filters=[Filter("quantity", ">=", 5)],
            order_by="quantity",
            limit=1,
        )

        self.assertEqual([doc.data["quantity"] for doc in docs], [5])

    def test_mismatched_types_never_match_range_filters(self):
        self.store.add("donations", {"quantity": "many"})
        self.assertEqual(
            self.store.query("donations", filters=[Filter("quantity", ">", 1)]), []
        )

    def test_returned_documents_are_copies(self):
        self.store.set("users", "u1", {"tags": ["a"]})
        doc = self.store.get("users", "u1")
        doc.data["tags"].append("b")
        self.assertEqual(self.store.get("users", "u1").data["tags"], ["a"])


class InMemoryDirectoryStoreTests(DirectoryStoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryDirectoryStore()

    def test_reset_clears_collections(self):
        self.store.add("users", {"email": "a@example.com"})
        self.store.reset()
        self.assertEqual(self.store.query("users"), [])


class SqlDirectoryStoreTests(DirectoryStoreContract, unittest.TestCase):
    def make_store(self):
        return SqlDirectoryStore("sqlite+pysqlite:///:memory:")


class FilterTests(unittest.TestCase):
    def test_unknown_operator_is_rejected(self):
        with self.assertRaises(ValueError):
            Filter("status", "in", ["pending"])

    def test_missing_field_does_not_match(self):
        self.assertFalse(Filter("status", "!=", "pending").matches({}))


if __name__ == "__main__":
    unittest.main()
