"""
Membership rules shared by the group service and the application state.

Everything here is pure: callers load the group and the relevant user
documents (inside a transaction when writing) and ask these helpers whether
a transition is allowed.
"""

from __future__ import annotations

import secrets
import string
from enum import StrEnum
from typing import Iterable, Mapping, Optional

from bandsync.errors import LastAdminViolation, SelfDemotion, Unauthorized
from bandsync.models import Group, GroupSettings, User, UserRole

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits

MANAGER_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


class MemberState(StrEnum):
    NONE = "none"
    PENDING = "pending"
    MEMBER = "member"


def member_state(group: Optional[Group], user_id: str) -> MemberState:
    if group is None:
        return MemberState.NONE
    if user_id in group.members:
        return MemberState.MEMBER
    if user_id in group.pending_members:
        return MemberState.PENDING
    return MemberState.NONE


def generate_invite_code(length: int = 6) -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    return (code or "").strip().upper()


def admin_ids(group: Group, users: Mapping[str, User]) -> set[str]:
    """Members of ``group`` whose profile carries the admin role."""
    return {
        uid
        for uid in group.members
        if uid in users and users[uid].role == UserRole.ADMIN
    }


def has_admin(group: Group, users: Mapping[str, User]) -> bool:
    """A group with members must keep at least one admin."""
    return not group.members or bool(admin_ids(group, users))


def check_removal(group: Group, users: Mapping[str, User], user_id: str) -> None:
    admins = admin_ids(group, users)
    if user_id in admins and not admins - {user_id}:
        raise LastAdminViolation("Cannot remove the only admin of the group")


def check_role_change(
    group: Group,
    users: Mapping[str, User],
    user_id: str,
    new_role: UserRole,
    *,
    actor_id: Optional[str] = None,
    allow_self_demotion: bool = False,
) -> None:
    if new_role == UserRole.ADMIN:
        return
    admins = admin_ids(group, users)
    if user_id not in admins:
        return
    if not admins - {user_id}:
        raise LastAdminViolation("Cannot take the admin role from the only admin")
    if actor_id == user_id and not allow_self_demotion:
        raise SelfDemotion("Admins cannot remove their own admin role")


def is_manager(role: Optional[UserRole]) -> bool:
    return role in MANAGER_ROLES


def can_invite(role: Optional[UserRole], settings: GroupSettings) -> bool:
    return is_manager(role) or (role is not None and settings.allow_members_to_invite)


def can_create_events(role: Optional[UserRole], settings: GroupSettings) -> bool:
    return is_manager(role) or (
        role is not None and settings.allow_members_to_create_events
    )


def can_create_setlists(role: Optional[UserRole], settings: GroupSettings) -> bool:
    return is_manager(role) or (
        role is not None and settings.allow_members_to_create_setlists
    )


def require_active_member(group: Group, actor: Optional[User], action: str) -> User:
    if actor is None or actor.id not in group.members:
        raise Unauthorized(f"Only members of the group can {action}")
    return actor


def require_roles(
    group: Group, actor: Optional[User], roles: Iterable[UserRole], action: str
) -> User:
    actor = require_active_member(group, actor, action)
    if actor.role not in tuple(roles):
        raise Unauthorized(f"Role {actor.role.value} cannot {action}")
    return actor
