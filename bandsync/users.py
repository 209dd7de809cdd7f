"""
User directory: profile documents keyed by identity-provider uid.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from bandsync.errors import InvalidArgument, NotFound
from bandsync.firebase_constants import MAX_IN_FILTER_VALUES, USERS_COLLECTION
from bandsync.models import User, UserRole, decode_user, parse_role
from bandsync.store import DOCUMENT_ID, DocumentStore
from bandsync.subscriptions import Subscription, subscribe_document

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, store: DocumentStore, *, lookup_batch_size: int = MAX_IN_FILTER_VALUES):
        self.store = store
        self.lookup_batch_size = min(lookup_batch_size, MAX_IN_FILTER_VALUES)

    def get_user(self, uid: str) -> Optional[User]:
        return decode_user(self.store.get(USERS_COLLECTION, uid))

    def require_user(self, uid: str) -> User:
        user = self.get_user(uid)
        if user is None:
            raise NotFound(f"User {uid} not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        email = (email or "").strip()
        if not email:
            raise InvalidArgument("Email is required")
        docs = self.store.query(USERS_COLLECTION, [("email", "==", email)], limit=1)
        if not docs and email != email.lower():
            docs = self.store.query(
                USERS_COLLECTION, [("email", "==", email.lower())], limit=1
            )
        return decode_user(docs[0]) if docs else None

    def fetch_users(self, ids: Iterable[str]) -> List[User]:
        """
        Look up users by id in chunks that fit the store's "in" filter.
        Results keep the order of ``ids``; unknown ids are skipped.
        """
        unique_ids: List[str] = []
        for uid in ids:
            if uid and uid not in unique_ids:
                unique_ids.append(uid)
        found: dict[str, User] = {}
        for start in range(0, len(unique_ids), self.lookup_batch_size):
            chunk = unique_ids[start : start + self.lookup_batch_size]
            for doc in self.store.query(USERS_COLLECTION, [(DOCUMENT_ID, "in", chunk)]):
                user = decode_user(doc)
                if user is not None:
                    found[user.id] = user
        if len(found) < len(unique_ids):
            logger.info(
                "Fetched %d of %d requested users", len(found), len(unique_ids)
            )
        return [found[uid] for uid in unique_ids if uid in found]

    def users_in_group(self, group_id: str) -> List[User]:
        docs = self.store.query(USERS_COLLECTION, [("groupId", "==", group_id)])
        return [user for user in map(decode_user, docs) if user is not None]

    def is_user_in_group(self, uid: str, group_id: str) -> bool:
        user = self.get_user(uid)
        return user is not None and user.group_id == group_id

    def update_profile(
        self, uid: str, *, name: Optional[str] = None, phone: Optional[str] = None
    ) -> User:
        changes = {}
        if name is not None:
            if not name.strip():
                raise InvalidArgument("Name must not be empty")
            changes["name"] = name.strip()
        if phone is not None:
            changes["phone"] = phone.strip()
        if changes:
            self.store.update(USERS_COLLECTION, uid, changes)
        return self.require_user(uid)

    def update_role(self, uid: str, role: UserRole) -> None:
        """Raw role write. Group-aware role changes go through GroupService."""
        self.store.update(USERS_COLLECTION, uid, {"role": parse_role(role).value})

    def clear_group(self, uid: str) -> None:
        self.store.update(USERS_COLLECTION, uid, {"groupId": None})

    def watch_user(
        self, uid: str, callback: Callable[[Optional[User]], None], **kwargs
    ) -> Subscription[Optional[User]]:
        return subscribe_document(
            self.store, USERS_COLLECTION, uid, decode_user, callback, **kwargs
        )
