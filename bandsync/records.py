"""
Group-scoped records: calendar events, setlists and tasks.

Every record carries ``groupId``. When an ``actor_id`` is passed the actor
must be an active member of that group; creating events and setlists is
further gated by role or by the group's settings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from bandsync.errors import InvalidArgument, NotFound, Unauthorized
from bandsync.firebase_constants import (
    EVENTS_COLLECTION,
    GROUPS_COLLECTION,
    SETLISTS_COLLECTION,
    TASKS_COLLECTION,
    USERS_COLLECTION,
)
from bandsync.json_utils import convert_keys
from bandsync.membership import (
    can_create_events,
    can_create_setlists,
    is_manager,
    require_active_member,
)
from bandsync.models import (
    Event,
    Group,
    Setlist,
    Task,
    User,
    as_utc,
    decode_event,
    decode_group,
    decode_setlist,
    decode_task,
    decode_user,
    encode,
)
from bandsync.store import DocumentStore

logger = logging.getLogger(__name__)

_NO_DUE_DATE = datetime.min.replace(tzinfo=timezone.utc)


def _title(value: str, label: str = "Title") -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(f"{label} must not be empty")
    return value


class RecordService:
    def __init__(self, store: DocumentStore):
        self.store = store

    # Access checks ---------------------------------------------------------

    def _group(self, group_id: str) -> Group:
        group = decode_group(self.store.get(GROUPS_COLLECTION, group_id))
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    def _actor(self, group: Group, actor_id: Optional[str], action: str) -> Optional[User]:
        if actor_id is None:
            return None
        actor = decode_user(self.store.get(USERS_COLLECTION, actor_id))
        return require_active_member(group, actor, action)

    def _check_owner(
        self,
        group_id: str,
        created_by: Optional[str],
        actor_id: Optional[str],
        action: str,
    ) -> None:
        """Creators and managers may change a record; other members may not."""
        if actor_id is None:
            return
        actor = self._actor(self._group(group_id), actor_id, action)
        if actor.id != created_by and not is_manager(actor.role):
            raise Unauthorized(f"Only the creator or a manager can {action}")

    # Events ---------------------------------------------------------------

    def create_event(
        self,
        group_id: str,
        title: str,
        date: datetime,
        *,
        type: str = "rehearsal",
        location: Optional[str] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> str:
        title = _title(title)
        group = self._group(group_id)
        actor = self._actor(group, actor_id, "create events")
        if actor is not None and not can_create_events(actor.role, group.settings):
            raise Unauthorized("Members of this group cannot create events")
        event = Event(
            id=None,
            group_id=group_id,
            title=title,
            date=as_utc(date),
            type=type or "rehearsal",
            location=location,
            notes=notes,
            created_by=actor_id,
        )
        event_id = self.store.add(EVENTS_COLLECTION, encode(event))
        logger.info("Event %s created in group %s", event_id, group_id)
        return event_id

    def get_event(self, event_id: str) -> Event:
        event = decode_event(self.store.get(EVENTS_COLLECTION, event_id))
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        return event

    def events(
        self,
        group_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        *,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Event]:
        docs = self.store.query(
            EVENTS_COLLECTION,
            [("groupId", "==", group_id)],
            order_by="date",
            descending=descending,
        )
        events = [event for event in map(decode_event, docs) if event is not None]
        start, end = as_utc(start), as_utc(end)
        if start is not None:
            events = [event for event in events if event.date >= start]
        if end is not None:
            events = [event for event in events if event.date < end]
        return events[:limit] if limit is not None else events

    def update_event(
        self, event_id: str, *, actor_id: Optional[str] = None, **changes
    ) -> Event:
        event = self.get_event(event_id)
        self._check_owner(event.group_id, event.created_by, actor_id, "edit this event")
        allowed = {"title", "date", "type", "location", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidArgument(f"Cannot update event fields: {sorted(unknown)}")
        if "title" in changes:
            changes["title"] = _title(changes["title"])
        if "date" in changes:
            if changes["date"] is None:
                raise InvalidArgument("Event date is required")
            changes["date"] = as_utc(changes["date"])
        if changes:
            self.store.update(
                EVENTS_COLLECTION, event_id, convert_keys(changes, "snake_to_camel")
            )
        return self.get_event(event_id)

    def delete_event(self, event_id: str, *, actor_id: Optional[str] = None) -> None:
        event = self.get_event(event_id)
        self._check_owner(event.group_id, event.created_by, actor_id, "delete this event")
        self.store.delete(EVENTS_COLLECTION, event_id)
        logger.info("Event %s deleted", event_id)

    # Setlists -------------------------------------------------------------

    def create_setlist(
        self,
        group_id: str,
        name: str,
        songs: Sequence[str] = (),
        *,
        actor_id: Optional[str] = None,
    ) -> str:
        name = _title(name, "Setlist name")
        group = self._group(group_id)
        actor = self._actor(group, actor_id, "create setlists")
        if actor is not None and not can_create_setlists(actor.role, group.settings):
            raise Unauthorized("Members of this group cannot create setlists")
        setlist = Setlist(
            id=None,
            group_id=group_id,
            name=name,
            songs=[song.strip() for song in songs if song and song.strip()],
            created_by=actor_id,
        )
        setlist_id = self.store.add(SETLISTS_COLLECTION, encode(setlist))
        logger.info("Setlist %s created in group %s", setlist_id, group_id)
        return setlist_id

    def get_setlist(self, setlist_id: str) -> Setlist:
        setlist = decode_setlist(self.store.get(SETLISTS_COLLECTION, setlist_id))
        if setlist is None:
            raise NotFound(f"Setlist {setlist_id} not found")
        return setlist

    def setlists(self, group_id: str, *, limit: Optional[int] = None) -> List[Setlist]:
        docs = self.store.query(
            SETLISTS_COLLECTION, [("groupId", "==", group_id)], limit=limit
        )
        return [setlist for setlist in map(decode_setlist, docs) if setlist is not None]

    def update_setlist(
        self,
        setlist_id: str,
        *,
        name: Optional[str] = None,
        songs: Optional[Sequence[str]] = None,
        actor_id: Optional[str] = None,
    ) -> Setlist:
        setlist = self.get_setlist(setlist_id)
        self._check_owner(
            setlist.group_id, setlist.created_by, actor_id, "edit this setlist"
        )
        changes = {}
        if name is not None:
            changes["name"] = _title(name, "Setlist name")
        if songs is not None:
            changes["songs"] = [song.strip() for song in songs if song and song.strip()]
        if changes:
            self.store.update(SETLISTS_COLLECTION, setlist_id, changes)
        return self.get_setlist(setlist_id)

    def delete_setlist(self, setlist_id: str, *, actor_id: Optional[str] = None) -> None:
        setlist = self.get_setlist(setlist_id)
        self._check_owner(
            setlist.group_id, setlist.created_by, actor_id, "delete this setlist"
        )
        self.store.delete(SETLISTS_COLLECTION, setlist_id)

    # Tasks ----------------------------------------------------------------

    def create_task(
        self,
        group_id: str,
        title: str,
        *,
        due_date: Optional[datetime] = None,
        assigned_to: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> str:
        title = _title(title)
        group = self._group(group_id)
        self._actor(group, actor_id, "create tasks")
        if assigned_to is not None and assigned_to not in group.members:
            raise InvalidArgument("Tasks can only be assigned to group members")
        task = Task(
            id=None,
            group_id=group_id,
            title=title,
            due_date=as_utc(due_date),
            assigned_to=assigned_to,
        )
        task_id = self.store.add(TASKS_COLLECTION, encode(task))
        logger.info("Task %s created in group %s", task_id, group_id)
        return task_id

    def get_task(self, task_id: str) -> Task:
        task = decode_task(self.store.get(TASKS_COLLECTION, task_id))
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def tasks(
        self,
        group_id: str,
        include_completed: bool = True,
        *,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """Tasks ordered by due date; tasks without one come last."""
        filters = [("groupId", "==", group_id)]
        if not include_completed:
            filters.append(("completed", "==", False))
        docs = self.store.query(TASKS_COLLECTION, filters)
        tasks = [task for task in map(decode_task, docs) if task is not None]
        tasks.sort(key=lambda task: (task.due_date is None, task.due_date or _NO_DUE_DATE))
        return tasks[:limit] if limit is not None else tasks

    def complete_task(
        self, task_id: str, completed: bool = True, *, actor_id: Optional[str] = None
    ) -> Task:
        task = self.get_task(task_id)
        if actor_id is not None:
            self._actor(self._group(task.group_id), actor_id, "update tasks")
        self.store.update(TASKS_COLLECTION, task_id, {"completed": bool(completed)})
        return self.get_task(task_id)

    def delete_task(self, task_id: str, *, actor_id: Optional[str] = None) -> None:
        task = self.get_task(task_id)
        if actor_id is not None:
            self._actor(self._group(task.group_id), actor_id, "delete tasks")
        self.store.delete(TASKS_COLLECTION, task_id)
