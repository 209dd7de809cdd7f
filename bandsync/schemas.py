"""
Pydantic schemas for the BandSync HTTP API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from bandsync.models import ChatType, FinanceCategory, FinanceType, UserRole


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str
    name: str = Field(..., max_length=128)
    phone: str = ""


class LoginRequest(BaseModel):
    email: str
    password: str


class ResetPasswordRequest(BaseModel):
    email: str


class SessionResponse(BaseModel):
    uid: str
    id_token: str
    refresh_token: Optional[str] = None


class StatusResponse(BaseModel):
    status: str = "ok"


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    phone: str
    group_id: Optional[str] = None
    role: UserRole


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class ModuleSettingsModel(BaseModel):
    enabled_modules: List[str]


class GroupSettingsModel(BaseModel):
    allow_members_to_invite: bool = True
    allow_members_to_create_events: bool = True
    allow_members_to_create_setlists: bool = True
    allow_guest_access: bool = False
    enable_notifications: bool = True
    module_settings: Optional[ModuleSettingsModel] = None


class GroupResponse(BaseModel):
    id: str
    name: str
    code: str
    members: List[str]
    pending_members: List[str]
    created_at: Optional[datetime] = None
    settings: GroupSettingsModel


class CreateGroupRequest(BaseModel):
    name: str = Field(..., max_length=128)


class GroupIdResponse(BaseModel):
    group_id: str


class JoinGroupRequest(BaseModel):
    code: str = Field(..., max_length=32)


class InviteRequest(BaseModel):
    email: str


class ChangeRoleRequest(BaseModel):
    role: UserRole


class RenameGroupRequest(BaseModel):
    name: str = Field(..., max_length=128)


class InviteCodeResponse(BaseModel):
    code: str


class ChangedResponse(BaseModel):
    changed: bool


class SessionStateResponse(BaseModel):
    is_logged_in: bool
    user: Optional[UserResponse] = None
    group: Optional[GroupResponse] = None
    is_in_group: bool
    is_pending_approval: bool
    is_active_member: bool
    is_group_admin: bool
    is_group_manager: bool
    can_create_events: bool
    can_create_setlists: bool
    can_invite_members: bool
    enabled_modules: List[str]


class ActivityStatsModel(BaseModel):
    event_count: int
    setlist_count: int
    task_count: int
    member_count: int


class EventModel(BaseModel):
    id: Optional[str] = None
    group_id: str
    title: str
    date: datetime
    type: str = "rehearsal"
    location: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


class SetlistModel(BaseModel):
    id: Optional[str] = None
    group_id: str
    name: str
    songs: List[str] = []
    created_by: Optional[str] = None


class TaskModel(BaseModel):
    id: Optional[str] = None
    group_id: str
    title: str
    due_date: Optional[datetime] = None
    completed: bool = False
    assigned_to: Optional[str] = None


class ActivityResponse(BaseModel):
    group: GroupResponse
    recent_events: List[EventModel]
    recent_setlists: List[SetlistModel]
    open_tasks: List[TaskModel]
    members: List[UserResponse]
    stats: ActivityStatsModel


class CreateChatRequest(BaseModel):
    name: str = ""
    type: ChatType = ChatType.GROUP
    participants: List[str] = []


class ChatResponse(BaseModel):
    id: str
    name: str
    type: ChatType
    participants: List[str]
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None


class SendMessageRequest(BaseModel):
    text: str = Field(..., max_length=4096)
    reply_to: Optional[str] = None


class EditMessageRequest(BaseModel):
    text: str = Field(..., max_length=4096)


class MessageResponse(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    text: str
    timestamp: Optional[datetime] = None
    reply_to: Optional[str] = None


class IdResponse(BaseModel):
    id: str


class CreateEventRequest(BaseModel):
    title: str
    date: datetime
    type: str = "rehearsal"
    location: Optional[str] = None
    notes: Optional[str] = None


class UpdateEventRequest(BaseModel):
    title: Optional[str] = None
    date: Optional[datetime] = None
    type: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class CreateSetlistRequest(BaseModel):
    name: str
    songs: List[str] = []


class UpdateSetlistRequest(BaseModel):
    name: Optional[str] = None
    songs: Optional[List[str]] = None


class CreateTaskRequest(BaseModel):
    title: str
    due_date: Optional[datetime] = None
    assigned_to: Optional[str] = None


class CompleteTaskRequest(BaseModel):
    completed: bool = True


class CreateFinanceRequest(BaseModel):
    type: FinanceType
    amount: float
    currency: str = Field(..., max_length=8)
    category: FinanceCategory
    date: Optional[datetime] = None
    details: str = ""


class FinanceRecordModel(BaseModel):
    id: str
    group_id: str
    type: FinanceType
    amount: float
    currency: str
    category: FinanceCategory
    date: datetime
    details: str = ""
    created_by: Optional[str] = None


class CurrencyTotalsModel(BaseModel):
    income: float
    expense: float
    balance: float


class FinanceSummaryResponse(BaseModel):
    totals: Dict[str, CurrencyTotalsModel]


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool
    # Set only for partially applied writes.
    completed: Optional[str] = None
    pending: Optional[str] = None
    resource_id: Optional[str] = None
