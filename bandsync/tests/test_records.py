import unittest
from datetime import datetime, timedelta, timezone

from bandsync.activity import ActivityService
from bandsync.errors import InvalidArgument, NotFound, Unauthorized
from bandsync.groups import GroupService
from bandsync.models import GroupSettings, User, UserRole, encode
from bandsync.records import RecordService
from bandsync.store import InMemoryDocumentStore
from bandsync.users import UserDirectory

NOW = datetime(2025, 5, 1, 18, 0, tzinfo=timezone.utc)


class RecordServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.groups = GroupService(self.store, UserDirectory(self.store))
        self.records = RecordService(self.store)
        for uid in ("ann", "ben", "cat", "out"):
            self.store.set("users", uid, encode(User(id=uid, email=f"{uid}@band.io")))
        self.group_id = self.groups.create_group("Band", "ann")
        code = self.groups.require_group(self.group_id).code
        for uid in ("ben", "cat"):
            self.groups.join_by_code(code, uid)
        self.groups.approve(self.group_id, "ben")

    def test_events_sorted_by_date_and_filtered(self):
        later = self.records.create_event(
            self.group_id, "Gig", NOW + timedelta(days=3), type="concert", actor_id="ben"
        )
        sooner = self.records.create_event(self.group_id, "Rehearsal", NOW, actor_id="ann")
        events = self.records.events(self.group_id)
        self.assertEqual([e.id for e in events], [sooner, later])
        self.assertEqual(events[1].type, "concert")
        self.assertEqual(events[1].created_by, "ben")

        window = self.records.events(self.group_id, start=NOW + timedelta(days=1))
        self.assertEqual([e.id for e in window], [later])
        window = self.records.events(self.group_id, end=NOW + timedelta(days=1))
        self.assertEqual([e.id for e in window], [sooner])

    def test_naive_and_aware_event_dates_mix(self):
        aware = self.records.create_event(self.group_id, "Gig", NOW + timedelta(hours=2))
        naive = self.records.create_event(self.group_id, "Soundcheck", datetime(2025, 5, 1, 19, 0))
        events = self.records.events(self.group_id)
        self.assertEqual([e.id for e in events], [naive, aware])
        self.assertTrue(all(e.date.tzinfo is not None for e in events))

        window = self.records.events(self.group_id, start=datetime(2025, 5, 1, 19, 30))
        self.assertEqual([e.id for e in window], [aware])

        self.records.update_event(naive, date=datetime(2025, 5, 1, 21, 0))
        self.assertEqual([e.id for e in self.records.events(self.group_id)], [aware, naive])
        with self.assertRaises(InvalidArgument):
            self.records.update_event(naive, date=None)

    def test_event_creation_rules(self):
        with self.assertRaises(InvalidArgument):
            self.records.create_event(self.group_id, " ", NOW)
        with self.assertRaises(Unauthorized):
            self.records.create_event(self.group_id, "Gig", NOW, actor_id="cat")
        with self.assertRaises(Unauthorized):
            self.records.create_event(self.group_id, "Gig", NOW, actor_id="out")
        with self.assertRaises(NotFound):
            self.records.create_event("missing", "Gig", NOW)

        self.groups.update_settings(
            self.group_id, GroupSettings(allow_members_to_create_events=False)
        )
        with self.assertRaises(Unauthorized):
            self.records.create_event(self.group_id, "Gig", NOW, actor_id="ben")
        self.records.create_event(self.group_id, "Gig", NOW, actor_id="ann")

    def test_update_and_delete_event(self):
        event_id = self.records.create_event(self.group_id, "Gig", NOW, actor_id="ben")
        updated = self.records.update_event(
            event_id, title="Big gig", location="Club", actor_id="ben"
        )
        self.assertEqual(updated.title, "Big gig")
        self.assertEqual(updated.location, "Club")
        with self.assertRaises(InvalidArgument):
            self.records.update_event(event_id, colour="red")

        self.groups.change_role(self.group_id, "ben", UserRole.MUSICIAN)
        other = self.records.create_event(self.group_id, "Other", NOW, actor_id="ann")
        with self.assertRaises(Unauthorized):
            self.records.delete_event(other, actor_id="ben")
        # Managers may delete anything.
        self.records.delete_event(event_id, actor_id="ann")
        with self.assertRaises(NotFound):
            self.records.get_event(event_id)

    def test_setlists(self):
        setlist_id = self.records.create_setlist(
            self.group_id, "Summer", ["Intro", " ", "Hit"], actor_id="ben"
        )
        self.assertEqual(self.records.get_setlist(setlist_id).songs, ["Intro", "Hit"])
        self.records.update_setlist(setlist_id, songs=["Hit", "Encore"], actor_id="ben")
        self.assertEqual([s.songs for s in self.records.setlists(self.group_id)], [["Hit", "Encore"]])
        with self.assertRaises(Unauthorized):
            self.records.create_setlist(self.group_id, "Mine", actor_id="cat")

        self.groups.update_settings(
            self.group_id, GroupSettings(allow_members_to_create_setlists=False)
        )
        with self.assertRaises(Unauthorized):
            self.records.create_setlist(self.group_id, "Winter", actor_id="ben")
        self.records.delete_setlist(setlist_id, actor_id="ann")
        self.assertEqual(self.records.setlists(self.group_id), [])

    def test_tasks(self):
        undated = self.records.create_task(self.group_id, "Print flyers", actor_id="ben")
        late = self.records.create_task(
            self.group_id, "Book van", due_date=NOW + timedelta(days=2), assigned_to="ben"
        )
        early = self.records.create_task(self.group_id, "Call venue", due_date=NOW)
        self.assertEqual(
            [t.id for t in self.records.tasks(self.group_id)], [early, late, undated]
        )
        with self.assertRaises(InvalidArgument):
            self.records.create_task(self.group_id, "Task", assigned_to="cat")

        task = self.records.complete_task(early, actor_id="ben")
        self.assertTrue(task.completed)
        self.assertEqual(
            [t.id for t in self.records.tasks(self.group_id, include_completed=False)],
            [late, undated],
        )
        self.records.delete_task(undated, actor_id="ann")
        with self.assertRaises(NotFound):
            self.records.get_task(undated)


class ActivityServiceTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.groups = GroupService(self.store, UserDirectory(self.store))
        self.records = RecordService(self.store)
        self.activity = ActivityService(self.groups, self.records)
        self.store.set("users", "ann", encode(User(id="ann", email="ann@band.io")))
        self.group_id = self.groups.create_group("Band", "ann")

    def test_activity_overview(self):
        for day in range(7):
            self.records.create_event(self.group_id, f"Day {day}", NOW + timedelta(days=day))
        for i in range(6):
            self.records.create_setlist(self.group_id, f"Set {i}")
        done = self.records.create_task(self.group_id, "Done", due_date=NOW)
        self.records.complete_task(done)
        self.records.create_task(self.group_id, "Open", due_date=NOW)

        overview = self.activity.activity(self.group_id)
        self.assertEqual(overview.group.id, self.group_id)
        self.assertEqual([e.title for e in overview.recent_events][:2], ["Day 6", "Day 5"])
        self.assertEqual(overview.stats.event_count, 5)
        self.assertEqual(overview.stats.setlist_count, 5)
        self.assertEqual([t.title for t in overview.open_tasks], ["Open"])
        self.assertEqual(overview.stats.task_count, 1)
        self.assertEqual([m.id for m in overview.members], ["ann"])
        self.assertEqual(overview.stats.member_count, 1)

    def test_activity_for_missing_group(self):
        with self.assertRaises(NotFound):
            self.activity.activity("missing")


if __name__ == "__main__":
    unittest.main()
