"""
Group registry and membership engine.

A user belongs to at most one group (``user.groupId``); the group document
holds the authoritative ``members`` and ``pendingMembers`` lists. Every
transition that touches both sides runs in one store transaction, so the two
never drift apart and concurrent admins cannot lose each other's updates:

    NONE -> PENDING -> MEMBER(role)      (join / invite, then approve)
    PENDING -> NONE                      (reject, or the user withdraws)
    MEMBER -> NONE                       (remove, or the user leaves)

The creator is the only user seeded straight into MEMBER, as admin. After
every mutation a group with members still has at least one admin.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from google.cloud.firestore_v1 import ArrayRemove, ArrayUnion, SERVER_TIMESTAMP

from bandsync.errors import Conflict, InvalidArgument, NotFound, Unauthorized
from bandsync.firebase_constants import GROUPS_COLLECTION, USERS_COLLECTION
from bandsync.membership import (
    MemberState,
    can_invite,
    check_removal,
    check_role_change,
    generate_invite_code,
    member_state,
    normalize_invite_code,
    require_active_member,
    require_roles,
)
from bandsync.models import (
    Group,
    GroupSettings,
    User,
    UserRole,
    decode_group,
    decode_user,
    encode,
    parse_role,
)
from bandsync.store import DocumentStore, Transaction
from bandsync.subscriptions import Subscription, subscribe_document
from bandsync.users import UserDirectory

logger = logging.getLogger(__name__)

ADMIN_ONLY = (UserRole.ADMIN,)

# Profile fields written when a user drops back to NONE.
_DETACHED_PROFILE = {"groupId": None, "role": UserRole.MEMBER.value}


class GroupService:
    def __init__(
        self,
        store: DocumentStore,
        users: UserDirectory,
        *,
        invite_code_length: int = 6,
        invite_code_max_attempts: int = 5,
        allow_self_demotion: bool = False,
    ):
        self.store = store
        self.users = users
        self.invite_code_length = invite_code_length
        self.invite_code_max_attempts = invite_code_max_attempts
        self.allow_self_demotion = allow_self_demotion

    # Reads ----------------------------------------------------------------

    def get_group(self, group_id: str) -> Optional[Group]:
        return decode_group(self.store.get(GROUPS_COLLECTION, group_id))

    def require_group(self, group_id: str) -> Group:
        group = self.get_group(group_id)
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    def find_by_code(self, code: str) -> Optional[Group]:
        code = normalize_invite_code(code)
        if not code:
            return None
        docs = self.store.query(GROUPS_COLLECTION, [("code", "==", code)], limit=2)
        if len(docs) > 1:
            raise Conflict("Invite code matches more than one group")
        return decode_group(docs[0]) if docs else None

    def members(self, group_id: str) -> List[User]:
        return self.users.fetch_users(self.require_group(group_id).members)

    def pending(self, group_id: str) -> List[User]:
        return self.users.fetch_users(self.require_group(group_id).pending_members)

    def watch_group(
        self, group_id: str, callback: Callable[[Optional[Group]], None], **kwargs
    ) -> Subscription[Optional[Group]]:
        return subscribe_document(
            self.store, GROUPS_COLLECTION, group_id, decode_group, callback, **kwargs
        )

    # Transaction helpers --------------------------------------------------

    @staticmethod
    def _read_group(transaction: Transaction, group_id: str) -> Group:
        group = decode_group(transaction.get(GROUPS_COLLECTION, group_id))
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    @staticmethod
    def _read_user(transaction: Transaction, user_id: str) -> User:
        user = decode_user(transaction.get(USERS_COLLECTION, user_id))
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    @staticmethod
    def _read_users(transaction: Transaction, user_ids: Iterable[str]) -> Dict[str, User]:
        users: Dict[str, User] = {}
        for uid in user_ids:
            if uid in users:
                continue
            user = decode_user(transaction.get(USERS_COLLECTION, uid))
            if user is not None:
                users[uid] = user
        return users

    def _authorize(
        self,
        transaction: Transaction,
        group: Group,
        actor_id: Optional[str],
        action: str,
        roles=ADMIN_ONLY,
        known: Optional[Dict[str, User]] = None,
    ) -> Optional[User]:
        """No actor means a trusted internal call; otherwise enforce roles."""
        if actor_id is None:
            return None
        if known is not None and actor_id in known:
            actor = known[actor_id]
        else:
            actor = decode_user(transaction.get(USERS_COLLECTION, actor_id))
        return require_roles(group, actor, roles, action)

    def _unique_invite_code(self) -> str:
        for _ in range(self.invite_code_max_attempts):
            code = generate_invite_code(self.invite_code_length)
            if not self.store.query(GROUPS_COLLECTION, [("code", "==", code)], limit=1):
                return code
            logger.warning("Invite code collision on %s, generating another", code)
        raise Conflict("Could not allocate a unique invite code")

    # Creation and joining -------------------------------------------------

    def create_group(self, name: str, owner_id: str) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidArgument("Group name is required")
        code = self._unique_invite_code()
        group_id = self.store.new_id(GROUPS_COLLECTION)

        def _txn(transaction: Transaction) -> None:
            owner = self._read_user(transaction, owner_id)
            if owner.group_id:
                raise Conflict("User already belongs to a group")
            group = Group(
                id=group_id,
                name=name,
                code=code,
                members=[owner_id],
                pending_members=[],
                settings=GroupSettings(),
            )
            body = encode(group)
            body["createdAt"] = SERVER_TIMESTAMP
            transaction.set(GROUPS_COLLECTION, group_id, body)
            transaction.update(
                USERS_COLLECTION,
                owner_id,
                {"groupId": group_id, "role": UserRole.ADMIN.value},
            )

        self.store.run_transaction(_txn)
        logger.info("Group %s (%s) created by %s", group_id, name, owner_id)
        return group_id

    def join_by_code(self, code: str, user_id: str) -> str:
        """Request membership. The user becomes PENDING until approved."""
        code = normalize_invite_code(code)
        if not code:
            raise InvalidArgument("Invite code is required")
        group = self.find_by_code(code)
        if group is None:
            raise NotFound("No group with this invite code")
        group_id = group.id

        def _txn(transaction: Transaction) -> bool:
            group = self._read_group(transaction, group_id)
            if group.code != code:
                raise NotFound("No group with this invite code")
            user = self._read_user(transaction, user_id)
            state = member_state(group, user_id)
            if state == MemberState.MEMBER:
                raise Conflict("User is already a member of this group")
            if user.group_id and user.group_id != group_id:
                raise Conflict("User already belongs to another group")
            if state == MemberState.PENDING:
                return False
            transaction.update(
                GROUPS_COLLECTION, group_id, {"pendingMembers": ArrayUnion([user_id])}
            )
            transaction.update(USERS_COLLECTION, user_id, {"groupId": group_id})
            return True

        if self.store.run_transaction(_txn):
            logger.info("User %s requested to join group %s", user_id, group_id)
        return group_id

    def invite_by_email(
        self, group_id: str, email: str, *, actor_id: Optional[str] = None
    ) -> str:
        """Add an existing user to the pending list by email."""
        invitee = self.users.find_by_email(email)
        if invitee is None:
            raise NotFound("No user with this email")
        user_id = invitee.id

        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            if actor_id is not None:
                actor = decode_user(transaction.get(USERS_COLLECTION, actor_id))
                actor = require_active_member(group, actor, "invite users")
                if not can_invite(actor.role, group.settings):
                    raise Unauthorized(f"Role {actor.role.value} cannot invite users")
            user = self._read_user(transaction, user_id)
            if member_state(group, user_id) != MemberState.NONE:
                raise Conflict("User is already in the group or awaiting approval")
            if user.group_id and user.group_id != group_id:
                raise Conflict("User already belongs to another group")
            transaction.update(
                GROUPS_COLLECTION, group_id, {"pendingMembers": ArrayUnion([user_id])}
            )
            transaction.update(USERS_COLLECTION, user_id, {"groupId": group_id})

        self.store.run_transaction(_txn)
        logger.info("User %s invited to group %s by %s", user_id, group_id, actor_id)
        return user_id

    # Membership transitions -----------------------------------------------

    def approve(
        self, group_id: str, user_id: str, *, actor_id: Optional[str] = None
    ) -> bool:
        """
        Move a pending user into members. Returns False (and writes nothing)
        if the user is already a member, so repeated approvals are harmless.
        """

        def _txn(transaction: Transaction) -> bool:
            group = self._read_group(transaction, group_id)
            self._authorize(transaction, group, actor_id, "approve members")
            user = self._read_user(transaction, user_id)
            if user_id in group.members:
                if user_id in group.pending_members:
                    transaction.update(
                        GROUPS_COLLECTION,
                        group_id,
                        {"pendingMembers": ArrayRemove([user_id])},
                    )
                return False
            if user_id not in group.pending_members:
                raise NotFound("User has no pending request for this group")
            transaction.update(
                GROUPS_COLLECTION,
                group_id,
                {
                    "pendingMembers": ArrayRemove([user_id]),
                    "members": ArrayUnion([user_id]),
                },
            )
            # Approval never grants admin; a stale Admin role from an old
            # group is dropped back to Member.
            role = UserRole.MEMBER if user.role == UserRole.ADMIN else user.role
            transaction.update(
                USERS_COLLECTION,
                user_id,
                {"groupId": group_id, "role": role.value},
            )
            return True

        approved = self.store.run_transaction(_txn)
        if approved:
            logger.info("User %s approved into group %s", user_id, group_id)
        return approved

    def reject(
        self, group_id: str, user_id: str, *, actor_id: Optional[str] = None
    ) -> None:
        """Drop a pending request. A user may withdraw their own request."""

        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            if actor_id != user_id:
                self._authorize(transaction, group, actor_id, "reject members")
            user = decode_user(transaction.get(USERS_COLLECTION, user_id))
            if user_id not in group.pending_members:
                raise NotFound("User has no pending request for this group")
            transaction.update(
                GROUPS_COLLECTION, group_id, {"pendingMembers": ArrayRemove([user_id])}
            )
            if user is not None and user.group_id in (None, group_id):
                transaction.update(USERS_COLLECTION, user_id, dict(_DETACHED_PROFILE))

        self.store.run_transaction(_txn)
        logger.info("Pending user %s removed from group %s", user_id, group_id)

    def remove(
        self, group_id: str, user_id: str, *, actor_id: Optional[str] = None
    ) -> None:
        """Remove a member. Anyone may remove themselves; the last admin may not."""

        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            members = self._read_users(transaction, group.members)
            if actor_id != user_id:
                self._authorize(
                    transaction, group, actor_id, "remove members", known=members
                )
            if user_id not in group.members:
                raise NotFound("User is not a member of this group")
            check_removal(group, members, user_id)
            transaction.update(
                GROUPS_COLLECTION, group_id, {"members": ArrayRemove([user_id])}
            )
            if user_id in members:
                transaction.update(USERS_COLLECTION, user_id, dict(_DETACHED_PROFILE))

        self.store.run_transaction(_txn)
        logger.info("User %s removed from group %s", user_id, group_id)

    def leave(self, group_id: str, user_id: str) -> None:
        """Self-service exit: withdraws a pending request or leaves as a member."""
        state = member_state(self.require_group(group_id), user_id)
        if state == MemberState.PENDING:
            self.reject(group_id, user_id, actor_id=user_id)
        elif state == MemberState.MEMBER:
            self.remove(group_id, user_id, actor_id=user_id)
        else:
            raise NotFound("User is not in this group")

    def change_role(
        self,
        group_id: str,
        user_id: str,
        new_role: UserRole,
        *,
        actor_id: Optional[str] = None,
    ) -> bool:
        new_role = parse_role(new_role)

        def _txn(transaction: Transaction) -> bool:
            group = self._read_group(transaction, group_id)
            members = self._read_users(transaction, group.members)
            self._authorize(transaction, group, actor_id, "change roles", known=members)
            if user_id not in group.members or user_id not in members:
                raise NotFound("User is not a member of this group")
            check_role_change(
                group,
                members,
                user_id,
                new_role,
                actor_id=actor_id,
                allow_self_demotion=self.allow_self_demotion,
            )
            if members[user_id].role == new_role:
                return False
            transaction.update(USERS_COLLECTION, user_id, {"role": new_role.value})
            return True

        changed = self.store.run_transaction(_txn)
        if changed:
            logger.info(
                "User %s in group %s is now %s", user_id, group_id, new_role.value
            )
        return changed

    # Group administration -------------------------------------------------

    def regenerate_invite_code(
        self, group_id: str, *, actor_id: Optional[str] = None
    ) -> str:
        """Replace the invite code. The old one stops matching immediately."""
        code = self._unique_invite_code()

        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            self._authorize(transaction, group, actor_id, "regenerate the invite code")
            transaction.update(GROUPS_COLLECTION, group_id, {"code": code})

        self.store.run_transaction(_txn)
        logger.info("Invite code of group %s regenerated", group_id)
        return code

    def rename_group(
        self, group_id: str, name: str, *, actor_id: Optional[str] = None
    ) -> None:
        name = (name or "").strip()
        if not name:
            raise InvalidArgument("Group name is required")

        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            self._authorize(transaction, group, actor_id, "rename the group")
            transaction.update(GROUPS_COLLECTION, group_id, {"name": name})

        self.store.run_transaction(_txn)

    def update_settings(
        self,
        group_id: str,
        settings: GroupSettings,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        def _txn(transaction: Transaction) -> None:
            group = self._read_group(transaction, group_id)
            self._authorize(transaction, group, actor_id, "change group settings")
            transaction.update(GROUPS_COLLECTION, group_id, {"settings": encode(settings)})

        self.store.run_transaction(_txn)
        logger.info("Settings of group %s updated", group_id)

    def reset_settings(self, group_id: str, *, actor_id: Optional[str] = None) -> None:
        self.update_settings(group_id, GroupSettings(), actor_id=actor_id)

    def delete_group(self, group_id: str, *, actor_id: Optional[str] = None) -> None:
        """Detach every member and pending user, then delete the group."""

        def _txn(transaction: Transaction) -> List[str]:
            group = self._read_group(transaction, group_id)
            users = self._read_users(
                transaction, list(group.members) + list(group.pending_members)
            )
            self._authorize(transaction, group, actor_id, "delete the group", known=users)
            detached = []
            for uid, user in users.items():
                if user.group_id in (None, group_id):
                    transaction.update(USERS_COLLECTION, uid, dict(_DETACHED_PROFILE))
                    detached.append(uid)
            transaction.delete(GROUPS_COLLECTION, group_id)
            return detached

        detached = self.store.run_transaction(_txn)
        logger.info("Group %s deleted, %d users detached", group_id, len(detached))
