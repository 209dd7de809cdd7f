import unittest
from datetime import datetime, timedelta, timezone

from bandsync.errors import InvalidArgument, NotFound, Unauthorized
from bandsync.finances import FinanceService
from bandsync.groups import GroupService
from bandsync.models import FinanceCategory, FinanceType, User, encode
from bandsync.store import InMemoryDocumentStore
from bandsync.users import UserDirectory

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


class FinanceServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.groups = GroupService(self.store, UserDirectory(self.store))
        self.finances = FinanceService(self.store)
        for uid in ("ann", "ben", "out"):
            self.store.set("users", uid, encode(User(id=uid, email=f"{uid}@band.io")))
        self.group_id = self.groups.create_group("Band", "ann")
        self.groups.join_by_code(self.groups.require_group(self.group_id).code, "ben")
        self.groups.approve(self.group_id, "ben")

    def _add(self, type, amount, currency, category, days=0, actor_id="ben"):
        return self.finances.add_record(
            self.group_id,
            type=type,
            amount=amount,
            currency=currency,
            category=category,
            date=NOW + timedelta(days=days),
            actor_id=actor_id,
        )

    def test_add_and_list_newest_first(self):
        first = self._add("income", 500, "eur", "performance", days=0)
        second = self._add(FinanceType.EXPENSE, 120.5, "EUR", FinanceCategory.FOOD, days=1)
        records = self.finances.records(self.group_id)
        self.assertEqual([r.id for r in records], [second, first])
        self.assertEqual(records[1].currency, "EUR")
        self.assertEqual(records[1].category, FinanceCategory.PERFORMANCE)
        self.assertEqual(records[0].created_by, "ben")

    def test_naive_date_sorts_with_aware_dates(self):
        aware = self._add("income", 50, "EUR", "merch", days=1)
        naive = self.finances.add_record(
            self.group_id,
            type="expense",
            amount=20,
            currency="EUR",
            category="food",
            date=datetime(2025, 6, 3, 12, 0),
            actor_id="ben",
        )
        records = self.finances.records(self.group_id)
        self.assertEqual([r.id for r in records], [naive, aware])
        self.assertEqual(records[0].date, datetime(2025, 6, 3, 12, 0, tzinfo=timezone.utc))

    def test_validation(self):
        with self.assertRaises(InvalidArgument):
            self._add("income", 0, "EUR", "merch")
        with self.assertRaises(InvalidArgument):
            self._add("income", -5, "EUR", "merch")
        with self.assertRaises(InvalidArgument):
            self._add("income", 10, " ", "merch")
        with self.assertRaises(InvalidArgument):
            self._add("income", 10, "EUR", "food")
        with self.assertRaises(InvalidArgument):
            self._add("expense", 10, "EUR", "royalties")
        with self.assertRaises(InvalidArgument):
            self._add("donation", 10, "EUR", "other")
        with self.assertRaises(InvalidArgument):
            self._add("income", "lots", "EUR", "other")
        with self.assertRaises(Unauthorized):
            self._add("income", 10, "EUR", "merch", actor_id="out")
        self.assertEqual(self.finances.records(self.group_id), [])

    def test_summary_per_currency(self):
        self._add("income", 500, "EUR", "performance")
        self._add("income", 50, "EUR", "merch", days=1)
        self._add("expense", 120, "EUR", "gear", days=2)
        self._add("expense", 30, "USD", "food", days=3)
        summary = self.finances.summary(self.group_id)
        self.assertEqual(sorted(summary), ["EUR", "USD"])
        self.assertEqual(summary["EUR"].income, 550)
        self.assertEqual(summary["EUR"].expense, 120)
        self.assertEqual(summary["EUR"].balance, 430)
        self.assertEqual(summary["USD"].balance, -30)

    def test_delete_record(self):
        mine = self._add("expense", 20, "EUR", "promo")
        theirs = self._add("expense", 20, "EUR", "promo", actor_id="ann")
        with self.assertRaises(Unauthorized):
            self.finances.delete_record(theirs, actor_id="ben")
        self.finances.delete_record(mine, actor_id="ben")
        self.finances.delete_record(theirs, actor_id="ann")
        self.assertEqual(self.finances.records(self.group_id), [])
        with self.assertRaises(NotFound):
            self.finances.delete_record(mine)


if __name__ == "__main__":
    unittest.main()
