"""
Process-wide session projection.

``AppState`` follows the signed-in user's profile and, through it, the
user's group. Every snapshot is folded into an immutable ``SessionState``;
observers hear about it only when the projection actually changes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from bandsync.auth import AuthService
from bandsync.errors import BandSyncError, NotFound
from bandsync.groups import GroupService
from bandsync.identity import AuthSession
from bandsync.membership import (
    MemberState,
    can_create_events,
    can_create_setlists,
    can_invite,
    is_manager,
    member_state,
)
from bandsync.models import Group, ModuleType, User, UserRole
from bandsync.subscriptions import Subscription
from bandsync.users import UserDirectory

logger = logging.getLogger(__name__)

Observer = Callable[["SessionState"], None]


@dataclass(frozen=True)
class SessionState:
    is_logged_in: bool = False
    user: Optional[User] = None
    group: Optional[Group] = None
    is_in_group: bool = False
    is_pending_approval: bool = False
    is_active_member: bool = False
    is_group_admin: bool = False
    is_group_manager: bool = False
    can_create_events: bool = False
    can_create_setlists: bool = False
    can_invite_members: bool = False
    enabled_modules: Tuple[str, ...] = ()


def project(logged_in: bool, user: Optional[User], group: Optional[Group]) -> SessionState:
    """Derive every flag from the user and group snapshots."""
    if not logged_in:
        return SessionState()
    if user is None:
        return SessionState(is_logged_in=True)
    # A group snapshot that no longer matches the profile is ignored.
    if group is not None and group.id != user.group_id:
        group = None
    state = member_state(group, user.id)
    active = state == MemberState.MEMBER
    role = user.role if active else None
    return SessionState(
        is_logged_in=True,
        user=user,
        group=group,
        is_in_group=user.group_id is not None,
        is_pending_approval=state == MemberState.PENDING,
        is_active_member=active,
        is_group_admin=role == UserRole.ADMIN,
        is_group_manager=is_manager(role),
        can_create_events=active and can_create_events(role, group.settings),
        can_create_setlists=active and can_create_setlists(role, group.settings),
        can_invite_members=active and can_invite(role, group.settings),
        enabled_modules=(
            tuple(group.settings.module_settings.enabled_modules) if active else ()
        ),
    )


class AppState:
    def __init__(self, auth: AuthService, users: UserDirectory, groups: GroupService):
        self.auth = auth
        self.users = users
        self.groups = groups
        self._lock = threading.RLock()
        self._session: Optional[AuthSession] = None
        self._user: Optional[User] = None
        self._group: Optional[Group] = None
        self._group_id: Optional[str] = None
        self._user_subscription: Optional[Subscription] = None
        self._group_subscription: Optional[Subscription] = None
        self._observers: List[Observer] = []
        self.state = SessionState()
        self.last_error: Optional[BandSyncError] = None

    # Observers -----------------------------------------------------------

    def observe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; the returned callable unregisters it."""
        with self._lock:
            self._observers.append(observer)

        def _remove() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _remove

    # Auth ------------------------------------------------------------------

    @property
    def current_uid(self) -> Optional[str]:
        return self._session.uid if self._session else None

    @property
    def is_logged_in(self) -> bool:
        return self._session is not None

    def sign_in(self, email: str, password: str) -> SessionState:
        session = self.auth.login(email, password)
        return self.start_session(session)

    def register(
        self, email: str, password: str, name: str, phone: str = ""
    ) -> SessionState:
        _, session = self.auth.register(email, password, name, phone)
        return self.start_session(session)

    def start_session(self, session: AuthSession) -> SessionState:
        with self._lock:
            self._session = session
        return self.refresh()

    def sign_out(self) -> SessionState:
        with self._lock:
            uid = self.current_uid
            self._session = None
        if uid is not None:
            self.auth.logout(uid)
        return self.refresh()

    def refresh(self) -> SessionState:
        """Re-attach the listeners for the current auth state."""
        with self._lock:
            self._detach()
            if self._session is not None:
                self._user_subscription = self.users.watch_user(
                    self._session.uid, self._on_user, on_error=self._on_error
                )
            self._publish()
            return self.state

    # Group shortcuts -------------------------------------------------------

    def can_access_module(self, module: ModuleType) -> bool:
        return ModuleType(module).value in self.state.enabled_modules

    def leave_current_group(self) -> None:
        state = self.state
        if state.user is None or state.user.group_id is None:
            raise NotFound("Not in a group")
        self.groups.leave(state.user.group_id, state.user.id)

    # Snapshot handling -----------------------------------------------------

    def _detach(self) -> None:
        for subscription in (self._group_subscription, self._user_subscription):
            if subscription is not None:
                subscription.cancel()
        self._user_subscription = None
        self._group_subscription = None
        self._user = None
        self._group = None
        self._group_id = None

    def _on_user(self, user: Optional[User]) -> None:
        with self._lock:
            if self._session is None or (user is not None and user.id != self._session.uid):
                return
            self._user = user
            group_id = user.group_id if user else None
            if group_id != self._group_id:
                self._switch_group(group_id)
            self._publish()

    def _switch_group(self, group_id: Optional[str]) -> None:
        if self._group_subscription is not None:
            self._group_subscription.cancel()
            self._group_subscription = None
        self._group = None
        self._group_id = group_id
        if group_id is None:
            return
        logger.info("Following group %s", group_id)
        self._group_subscription = self.groups.watch_group(
            group_id,
            lambda group: self._on_group(group_id, group),
            on_error=self._on_error,
        )

    def _on_group(self, group_id: str, group: Optional[Group]) -> None:
        with self._lock:
            # Late delivery from a group we already stopped following.
            if group_id != self._group_id:
                return
            self._group = group
            self._publish()

    def _on_error(self, error: BandSyncError) -> None:
        with self._lock:
            self.last_error = error

    def _publish(self) -> None:
        state = project(self._session is not None, self._user, self._group)
        if state == self.state:
            return
        self.state = state
        for observer in list(self._observers):
            observer(state)
