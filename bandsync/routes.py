"""
HTTP routes for the BandSync API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from dacite import from_dict
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bandsync.activity import ActivityService
from bandsync.app_state import project
from bandsync.auth import AuthService
from bandsync.chat import ChatService
from bandsync.dependencies import (
    get_activity_service,
    get_auth_service,
    get_chat_service,
    get_finance_service,
    get_group_service,
    get_record_service,
    get_user_directory,
)
from bandsync.errors import Unauthorized
from bandsync.finances import FinanceService
from bandsync.groups import GroupService
from bandsync.membership import MemberState, member_state
from bandsync.models import Group, GroupSettings
from bandsync.records import RecordService
from bandsync.schemas import (
    ActivityResponse,
    ChangedResponse,
    ChangeRoleRequest,
    ChatResponse,
    CompleteTaskRequest,
    CreateChatRequest,
    CreateEventRequest,
    CreateFinanceRequest,
    CreateGroupRequest,
    CreateSetlistRequest,
    CreateTaskRequest,
    CurrencyTotalsModel,
    EditMessageRequest,
    EventModel,
    FinanceRecordModel,
    FinanceSummaryResponse,
    GroupIdResponse,
    GroupResponse,
    GroupSettingsModel,
    IdResponse,
    InviteCodeResponse,
    InviteRequest,
    JoinGroupRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    RenameGroupRequest,
    ResetPasswordRequest,
    SendMessageRequest,
    SessionResponse,
    SessionStateResponse,
    SetlistModel,
    StatusResponse,
    TaskModel,
    UpdateEventRequest,
    UpdateProfileRequest,
    UpdateSetlistRequest,
    UserResponse,
)
from bandsync.users import UserDirectory

logger = logging.getLogger(__name__)

router = APIRouter()

_bearer = HTTPBearer(auto_error=False)


def get_current_uid(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    auth: AuthService = Depends(get_auth_service),
) -> str:
    """Resolve ``Authorization: Bearer <token>`` to a uid."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return auth.verify_token(credentials.credentials)
    except Unauthorized as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc


def _visible_group(groups: GroupService, group_id: str, uid: str) -> Group:
    """Members and pending users may read their group; nobody else may."""
    group = groups.require_group(group_id)
    if member_state(group, uid) == MemberState.NONE:
        raise Unauthorized("Not a member of this group")
    return group


def _member_group(groups: GroupService, group_id: str, uid: str) -> Group:
    group = groups.require_group(group_id)
    if uid not in group.members:
        raise Unauthorized("Only members of the group can do this")
    return group


# Auth -----------------------------------------------------------------------


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
def register(payload: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    _, session = auth.register(
        payload.email, payload.password, payload.name, payload.phone
    )
    return SessionResponse(**asdict(session))


@router.post("/auth/login", response_model=SessionResponse)
def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    session = auth.login(payload.email, payload.password)
    return SessionResponse(**asdict(session))


@router.post("/auth/logout", response_model=StatusResponse)
def logout(
    uid: str = Depends(get_current_uid),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(uid)
    return StatusResponse()


@router.post("/auth/reset-password", response_model=StatusResponse)
def reset_password(
    payload: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    auth.reset_password(payload.email)
    return StatusResponse()


@router.get("/session", response_model=SessionStateResponse)
def session_state(
    uid: str = Depends(get_current_uid),
    users: UserDirectory = Depends(get_user_directory),
    groups: GroupService = Depends(get_group_service),
):
    """The same projection the client keeps in its application state."""
    user = users.get_user(uid)
    group = groups.get_group(user.group_id) if user and user.group_id else None
    return SessionStateResponse.model_validate(asdict(project(True, user, group)))


# Users ----------------------------------------------------------------------


@router.get("/users/me", response_model=UserResponse)
def get_me(
    uid: str = Depends(get_current_uid),
    users: UserDirectory = Depends(get_user_directory),
):
    return UserResponse.model_validate(asdict(users.require_user(uid)))


@router.patch("/users/me", response_model=UserResponse)
def update_me(
    payload: UpdateProfileRequest,
    uid: str = Depends(get_current_uid),
    users: UserDirectory = Depends(get_user_directory),
):
    user = users.update_profile(uid, name=payload.name, phone=payload.phone)
    return UserResponse.model_validate(asdict(user))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    uid: str = Depends(get_current_uid),
    users: UserDirectory = Depends(get_user_directory),
):
    return UserResponse.model_validate(asdict(users.require_user(user_id)))


# Groups ---------------------------------------------------------------------


@router.post("/groups", response_model=GroupIdResponse, status_code=201)
def create_group(
    payload: CreateGroupRequest,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return GroupIdResponse(group_id=groups.create_group(payload.name, uid))


@router.post("/groups/join", response_model=GroupIdResponse)
def join_group(
    payload: JoinGroupRequest,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return GroupIdResponse(group_id=groups.join_by_code(payload.code, uid))


@router.get("/groups/{group_id}", response_model=GroupResponse)
def get_group(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return GroupResponse.model_validate(asdict(_visible_group(groups, group_id, uid)))


@router.get("/groups/{group_id}/members", response_model=List[UserResponse])
def list_members(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    _visible_group(groups, group_id, uid)
    return [UserResponse.model_validate(asdict(u)) for u in groups.members(group_id)]


@router.get("/groups/{group_id}/pending", response_model=List[UserResponse])
def list_pending(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    _member_group(groups, group_id, uid)
    return [UserResponse.model_validate(asdict(u)) for u in groups.pending(group_id)]


@router.post("/groups/{group_id}/invite", response_model=IdResponse)
def invite_member(
    group_id: str,
    payload: InviteRequest,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return IdResponse(id=groups.invite_by_email(group_id, payload.email, actor_id=uid))


@router.post("/groups/{group_id}/pending/{user_id}/approve", response_model=ChangedResponse)
def approve_member(
    group_id: str,
    user_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return ChangedResponse(changed=groups.approve(group_id, user_id, actor_id=uid))


@router.post("/groups/{group_id}/pending/{user_id}/reject", response_model=StatusResponse)
def reject_member(
    group_id: str,
    user_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.reject(group_id, user_id, actor_id=uid)
    return StatusResponse()


@router.delete("/groups/{group_id}/members/{user_id}", response_model=StatusResponse)
def remove_member(
    group_id: str,
    user_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.remove(group_id, user_id, actor_id=uid)
    return StatusResponse()


@router.put("/groups/{group_id}/members/{user_id}/role", response_model=ChangedResponse)
def change_role(
    group_id: str,
    user_id: str,
    payload: ChangeRoleRequest,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    changed = groups.change_role(group_id, user_id, payload.role, actor_id=uid)
    return ChangedResponse(changed=changed)


@router.post("/groups/{group_id}/code", response_model=InviteCodeResponse)
def regenerate_code(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    return InviteCodeResponse(code=groups.regenerate_invite_code(group_id, actor_id=uid))


@router.patch("/groups/{group_id}", response_model=StatusResponse)
def rename_group(
    group_id: str,
    payload: RenameGroupRequest,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.rename_group(group_id, payload.name, actor_id=uid)
    return StatusResponse()


@router.put("/groups/{group_id}/settings", response_model=StatusResponse)
def update_settings(
    group_id: str,
    payload: GroupSettingsModel,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    data = payload.model_dump()
    if data.get("module_settings") is None:
        data.pop("module_settings", None)
    groups.update_settings(
        group_id, from_dict(data_class=GroupSettings, data=data), actor_id=uid
    )
    return StatusResponse()


@router.delete("/groups/{group_id}/settings", response_model=StatusResponse)
def reset_settings(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.reset_settings(group_id, actor_id=uid)
    return StatusResponse()


@router.delete("/groups/{group_id}", response_model=StatusResponse)
def delete_group(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.delete_group(group_id, actor_id=uid)
    return StatusResponse()


@router.post("/groups/{group_id}/leave", response_model=StatusResponse)
def leave_group(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
):
    groups.leave(group_id, uid)
    return StatusResponse()


@router.get("/groups/{group_id}/activity", response_model=ActivityResponse)
def group_activity(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    activity: ActivityService = Depends(get_activity_service),
):
    _member_group(groups, group_id, uid)
    return ActivityResponse.model_validate(asdict(activity.activity(group_id)))


# Chats ----------------------------------------------------------------------


@router.get("/chats", response_model=List[ChatResponse])
def list_chats(
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    return [ChatResponse.model_validate(asdict(c)) for c in chats.chats_for_user(uid)]


@router.post("/chats", response_model=IdResponse, status_code=201)
def create_chat(
    payload: CreateChatRequest,
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    participants = [uid] + [p for p in payload.participants if p != uid]
    return IdResponse(id=chats.create_chat(payload.name, payload.type, participants))


@router.get("/chats/{chat_id}/messages", response_model=List[MessageResponse])
def list_messages(
    chat_id: str,
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    if uid not in chats.require_chat(chat_id).participants:
        raise Unauthorized("Only participants can read this chat")
    return [MessageResponse.model_validate(asdict(m)) for m in chats.messages(chat_id)]


@router.post("/chats/{chat_id}/messages", response_model=IdResponse, status_code=201)
def send_message(
    chat_id: str,
    payload: SendMessageRequest,
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    return IdResponse(
        id=chats.send_message(chat_id, uid, payload.text, reply_to=payload.reply_to)
    )


@router.patch("/messages/{message_id}", response_model=StatusResponse)
def edit_message(
    message_id: str,
    payload: EditMessageRequest,
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    chats.edit_message(message_id, payload.text, actor_id=uid)
    return StatusResponse()


@router.delete("/messages/{message_id}", response_model=StatusResponse)
def delete_message(
    message_id: str,
    uid: str = Depends(get_current_uid),
    chats: ChatService = Depends(get_chat_service),
):
    chats.delete_message(message_id, actor_id=uid)
    return StatusResponse()


# Records --------------------------------------------------------------------


@router.get("/groups/{group_id}/events", response_model=List[EventModel])
def list_events(
    group_id: str,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    records: RecordService = Depends(get_record_service),
):
    _member_group(groups, group_id, uid)
    return [
        EventModel.model_validate(asdict(e))
        for e in records.events(group_id, start=start, end=end)
    ]


@router.post("/groups/{group_id}/events", response_model=IdResponse, status_code=201)
def create_event(
    group_id: str,
    payload: CreateEventRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    event_id = records.create_event(
        group_id,
        payload.title,
        payload.date,
        type=payload.type,
        location=payload.location,
        notes=payload.notes,
        actor_id=uid,
    )
    return IdResponse(id=event_id)


@router.patch("/events/{event_id}", response_model=EventModel)
def update_event(
    event_id: str,
    payload: UpdateEventRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    changes = payload.model_dump(exclude_unset=True)
    event = records.update_event(event_id, actor_id=uid, **changes)
    return EventModel.model_validate(asdict(event))


@router.delete("/events/{event_id}", response_model=StatusResponse)
def delete_event(
    event_id: str,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    records.delete_event(event_id, actor_id=uid)
    return StatusResponse()


@router.get("/groups/{group_id}/setlists", response_model=List[SetlistModel])
def list_setlists(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    records: RecordService = Depends(get_record_service),
):
    _member_group(groups, group_id, uid)
    return [SetlistModel.model_validate(asdict(s)) for s in records.setlists(group_id)]


@router.post("/groups/{group_id}/setlists", response_model=IdResponse, status_code=201)
def create_setlist(
    group_id: str,
    payload: CreateSetlistRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    setlist_id = records.create_setlist(
        group_id, payload.name, payload.songs, actor_id=uid
    )
    return IdResponse(id=setlist_id)


@router.patch("/setlists/{setlist_id}", response_model=SetlistModel)
def update_setlist(
    setlist_id: str,
    payload: UpdateSetlistRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    setlist = records.update_setlist(
        setlist_id, name=payload.name, songs=payload.songs, actor_id=uid
    )
    return SetlistModel.model_validate(asdict(setlist))


@router.delete("/setlists/{setlist_id}", response_model=StatusResponse)
def delete_setlist(
    setlist_id: str,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    records.delete_setlist(setlist_id, actor_id=uid)
    return StatusResponse()


@router.get("/groups/{group_id}/tasks", response_model=List[TaskModel])
def list_tasks(
    group_id: str,
    include_completed: bool = Query(default=True),
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    records: RecordService = Depends(get_record_service),
):
    _member_group(groups, group_id, uid)
    return [
        TaskModel.model_validate(asdict(t))
        for t in records.tasks(group_id, include_completed)
    ]


@router.post("/groups/{group_id}/tasks", response_model=IdResponse, status_code=201)
def create_task(
    group_id: str,
    payload: CreateTaskRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    task_id = records.create_task(
        group_id,
        payload.title,
        due_date=payload.due_date,
        assigned_to=payload.assigned_to,
        actor_id=uid,
    )
    return IdResponse(id=task_id)


@router.post("/tasks/{task_id}/complete", response_model=TaskModel)
def complete_task(
    task_id: str,
    payload: CompleteTaskRequest,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    task = records.complete_task(task_id, payload.completed, actor_id=uid)
    return TaskModel.model_validate(asdict(task))


@router.delete("/tasks/{task_id}", response_model=StatusResponse)
def delete_task(
    task_id: str,
    uid: str = Depends(get_current_uid),
    records: RecordService = Depends(get_record_service),
):
    records.delete_task(task_id, actor_id=uid)
    return StatusResponse()


# Finances -------------------------------------------------------------------


@router.get("/groups/{group_id}/finances", response_model=List[FinanceRecordModel])
def list_finances(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    finances: FinanceService = Depends(get_finance_service),
):
    _member_group(groups, group_id, uid)
    return [
        FinanceRecordModel.model_validate(asdict(r)) for r in finances.records(group_id)
    ]


@router.post("/groups/{group_id}/finances", response_model=IdResponse, status_code=201)
def add_finance_record(
    group_id: str,
    payload: CreateFinanceRequest,
    uid: str = Depends(get_current_uid),
    finances: FinanceService = Depends(get_finance_service),
):
    record_id = finances.add_record(
        group_id,
        type=payload.type,
        amount=payload.amount,
        currency=payload.currency,
        category=payload.category,
        date=payload.date,
        details=payload.details,
        actor_id=uid,
    )
    return IdResponse(id=record_id)


@router.delete("/finances/{record_id}", response_model=StatusResponse)
def delete_finance_record(
    record_id: str,
    uid: str = Depends(get_current_uid),
    finances: FinanceService = Depends(get_finance_service),
):
    finances.delete_record(record_id, actor_id=uid)
    return StatusResponse()


@router.get("/groups/{group_id}/finances/summary", response_model=FinanceSummaryResponse)
def finance_summary(
    group_id: str,
    uid: str = Depends(get_current_uid),
    groups: GroupService = Depends(get_group_service),
    finances: FinanceService = Depends(get_finance_service),
):
    _member_group(groups, group_id, uid)
    totals = {
        currency: CurrencyTotalsModel(
            income=entry.income, expense=entry.expense, balance=entry.balance
        )
        for currency, entry in finances.summary(group_id).items()
    }
    return FinanceSummaryResponse(totals=totals)
