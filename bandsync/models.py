"""
Typed documents and the decode/encode boundary.

Every document read from the store passes through ``decode_*`` exactly once:
keys are converted to snake_case, a per-type migration fills defaults for
fields older clients never wrote, and ``dacite`` builds the dataclass.
Anything the migration cannot repair surfaces as ``SchemaError``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum, StrEnum
from typing import Any, Callable, List, Optional, Type, TypeVar

from dacite import Config, DaciteError, from_dict

from bandsync.errors import InvalidArgument, SchemaError
from bandsync.json_utils import convert_keys
from bandsync.store import StoredDocument

T = TypeVar("T")


class UserRole(StrEnum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    MUSICIAN = "Musician"
    MEMBER = "Member"

    @classmethod
    def parse(cls, value: Any) -> "UserRole":
        """Case-insensitive lookup. A missing or blank role means ``MEMBER``."""
        if isinstance(value, cls):
            return value
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.MEMBER
        if isinstance(value, str):
            lowered = value.strip().lower()
            for role in cls:
                if role.value.lower() == lowered:
                    return role
        raise ValueError(f"Unknown role: {value!r}")


def parse_role(value: Any) -> UserRole:
    """``UserRole.parse`` for caller input: unknown roles are InvalidArgument."""
    try:
        return UserRole.parse(value)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ModuleType(StrEnum):
    CALENDAR = "calendar"
    SETLISTS = "setlists"
    TASKS = "tasks"
    CHATS = "chats"
    FINANCES = "finances"
    MERCHANDISE = "merchandise"
    CONTACTS = "contacts"
    ADMIN = "admin"


DEFAULT_MODULES = [module.value for module in ModuleType]


class ChatType(StrEnum):
    PRIVATE = "private"
    GROUP = "group"


class FinanceType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class FinanceCategory(StrEnum):
    LOGISTICS = "logistics"
    FOOD = "food"
    GEAR = "gear"
    PROMO = "promo"
    ACCOMMODATION = "accommodation"
    PERFORMANCE = "performance"
    MERCH = "merch"
    ROYALTIES = "royalties"
    SPONSORSHIP = "sponsorship"
    OTHER = "other"

    @classmethod
    def for_type(cls, finance_type: FinanceType) -> List["FinanceCategory"]:
        if finance_type == FinanceType.INCOME:
            return [
                cls.PERFORMANCE,
                cls.MERCH,
                cls.ROYALTIES,
                cls.SPONSORSHIP,
                cls.OTHER,
            ]
        return [
            cls.LOGISTICS,
            cls.FOOD,
            cls.GEAR,
            cls.PROMO,
            cls.ACCOMMODATION,
            cls.OTHER,
        ]


@dataclass
class User:
    id: str
    email: str
    name: str = ""
    phone: str = ""
    group_id: Optional[str] = None
    role: UserRole = UserRole.MEMBER


@dataclass
class ModuleSettings:
    enabled_modules: List[str] = field(default_factory=lambda: list(DEFAULT_MODULES))

    def is_module_enabled(self, module: ModuleType) -> bool:
        return module.value in self.enabled_modules


@dataclass
class GroupSettings:
    allow_members_to_invite: bool = True
    allow_members_to_create_events: bool = True
    allow_members_to_create_setlists: bool = True
    allow_guest_access: bool = False
    enable_notifications: bool = True
    module_settings: ModuleSettings = field(default_factory=ModuleSettings)


@dataclass
class Group:
    id: str
    name: str
    code: str
    members: List[str] = field(default_factory=list)
    pending_members: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    settings: GroupSettings = field(default_factory=GroupSettings)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def pending_count(self) -> int:
        return len(self.pending_members)

    @property
    def enabled_module_types(self) -> List[ModuleType]:
        return [
            module
            for module in ModuleType
            if self.settings.module_settings.is_module_enabled(module)
        ]


@dataclass
class Chat:
    id: Optional[str]
    name: str
    type: ChatType = ChatType.GROUP
    participants: List[str] = field(default_factory=list)
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None


@dataclass
class Message:
    id: Optional[str]
    chat_id: str
    sender_id: str
    text: str
    timestamp: Optional[datetime] = None
    reply_to: Optional[str] = None


@dataclass
class Event:
    id: Optional[str]
    group_id: str
    title: str
    date: datetime
    type: str = "rehearsal"
    location: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class Setlist:
    id: Optional[str]
    group_id: str
    name: str
    songs: List[str] = field(default_factory=list)
    created_by: Optional[str] = None


@dataclass
class Task:
    id: Optional[str]
    group_id: str
    title: str
    due_date: Optional[datetime] = None
    completed: bool = False
    assigned_to: Optional[str] = None


@dataclass
class FinanceRecord:
    id: Optional[str]
    group_id: str
    type: FinanceType
    amount: float
    currency: str
    category: FinanceCategory
    date: datetime
    details: str = ""
    created_by: Optional[str] = None


_DACITE_CONFIG = Config(cast=[Enum], check_types=False)


def _decode(
    data_class: Type[T],
    snapshot: Optional[StoredDocument],
    migrate: Callable[[dict, StoredDocument], None],
) -> Optional[T]:
    if snapshot is None or not snapshot.exists:
        return None
    data = convert_keys(dict(snapshot.data), "camel_to_snake")
    data["id"] = snapshot.id
    try:
        migrate(data, snapshot)
        return from_dict(data_class=data_class, data=data, config=_DACITE_CONFIG)
    except (DaciteError, ValueError, TypeError, KeyError, AttributeError) as exc:
        raise SchemaError(
            f"{snapshot.collection}/{snapshot.id} does not match {data_class.__name__}: {exc}"
        ) from exc


def _stored_time(value: Any) -> Any:
    return as_utc(value) if isinstance(value, datetime) else value


def _unique(values: Optional[list]) -> list:
    seen = []
    for value in values or []:
        if value not in seen:
            seen.append(value)
    return seen


def _migrate_user(data: dict, snapshot: StoredDocument) -> None:
    data["role"] = UserRole.parse(data.get("role"))
    data["name"] = data.get("name") or ""
    data["phone"] = data.get("phone") or ""
    if not data.get("group_id"):
        data["group_id"] = None


def _migrate_group(data: dict, snapshot: StoredDocument) -> None:
    data["members"] = _unique(data.get("members"))
    data["pending_members"] = _unique(data.get("pending_members"))
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise TypeError(f"settings must be a map, got {type(settings).__name__}")
    if not settings.get("module_settings"):
        settings.pop("module_settings", None)
    data["settings"] = settings
    if data.get("created_at") is None:
        data["created_at"] = snapshot.create_time


def _migrate_chat(data: dict, snapshot: StoredDocument) -> None:
    data["participants"] = _unique(data.get("participants"))
    data["type"] = data.get("type") or ChatType.GROUP.value


def _migrate_message(data: dict, snapshot: StoredDocument) -> None:
    if data.get("timestamp") is None:
        data["timestamp"] = snapshot.create_time


def _migrate_event(data: dict, snapshot: StoredDocument) -> None:
    if "date" in data:
        data["date"] = _stored_time(data["date"])


def _migrate_setlist(data: dict, snapshot: StoredDocument) -> None:
    data["songs"] = list(data.get("songs") or [])


def _migrate_task(data: dict, snapshot: StoredDocument) -> None:
    data["completed"] = bool(data.get("completed", False))
    data["due_date"] = _stored_time(data.get("due_date"))


def _migrate_finance(data: dict, snapshot: StoredDocument) -> None:
    data["amount"] = float(data["amount"])
    data["currency"] = str(data.get("currency") or "").upper()
    data["details"] = data.get("details") or ""
    if "date" in data:
        data["date"] = _stored_time(data["date"])


def decode_user(snapshot: Optional[StoredDocument]) -> Optional[User]:
    return _decode(User, snapshot, _migrate_user)


def decode_group(snapshot: Optional[StoredDocument]) -> Optional[Group]:
    return _decode(Group, snapshot, _migrate_group)


def decode_chat(snapshot: Optional[StoredDocument]) -> Optional[Chat]:
    return _decode(Chat, snapshot, _migrate_chat)


def decode_message(snapshot: Optional[StoredDocument]) -> Optional[Message]:
    return _decode(Message, snapshot, _migrate_message)


def decode_event(snapshot: Optional[StoredDocument]) -> Optional[Event]:
    return _decode(Event, snapshot, _migrate_event)


def decode_setlist(snapshot: Optional[StoredDocument]) -> Optional[Setlist]:
    return _decode(Setlist, snapshot, _migrate_setlist)


def decode_task(snapshot: Optional[StoredDocument]) -> Optional[Task]:
    return _decode(Task, snapshot, _migrate_task)


def decode_finance_record(
    snapshot: Optional[StoredDocument],
) -> Optional[FinanceRecord]:
    return _decode(FinanceRecord, snapshot, _migrate_finance)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def encode(document: Any) -> dict:
    """Dataclass -> camelCase document body. The ``id`` field is not stored
    in the body except for users, whose documents carry it."""
    data = _plain(asdict(document))
    if not isinstance(document, User):
        data.pop("id", None)
    return convert_keys(data, "snake_to_camel")
