"""
Group activity overview: recent records and member highlights in one read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from bandsync.groups import GroupService
from bandsync.models import Event, Group, Setlist, Task, User
from bandsync.records import RecordService

RECENT_LIMIT = 5


@dataclass
class ActivityStats:
    event_count: int = 0
    setlist_count: int = 0
    task_count: int = 0
    member_count: int = 0


@dataclass
class GroupActivity:
    group: Group
    recent_events: List[Event] = field(default_factory=list)
    recent_setlists: List[Setlist] = field(default_factory=list)
    open_tasks: List[Task] = field(default_factory=list)
    members: List[User] = field(default_factory=list)
    stats: ActivityStats = field(default_factory=ActivityStats)


class ActivityService:
    def __init__(self, groups: GroupService, records: RecordService):
        self.groups = groups
        self.records = records

    def activity(self, group_id: str) -> GroupActivity:
        group = self.groups.require_group(group_id)
        events = self.records.events(group_id, descending=True, limit=RECENT_LIMIT)
        setlists = self.records.setlists(group_id, limit=RECENT_LIMIT)
        tasks = self.records.tasks(group_id, include_completed=False, limit=RECENT_LIMIT)
        members = self.groups.users.fetch_users(group.members[:RECENT_LIMIT])
        return GroupActivity(
            group=group,
            recent_events=events,
            recent_setlists=setlists,
            open_tasks=tasks,
            members=members,
            stats=ActivityStats(
                event_count=len(events),
                setlist_count=len(setlists),
                task_count=len(tasks),
                member_count=group.member_count,
            ),
        )
