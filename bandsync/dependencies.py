"""
Dependency wiring for the FastAPI app.

Clients are created once per process. Services receive their collaborators
through their constructors.
"""

from __future__ import annotations

import logging

import firebase_admin
from firebase_admin import credentials, firestore

from bandsync.activity import ActivityService
from bandsync.auth import AuthService
from bandsync.chat import ChatService
from bandsync.config import get_settings
from bandsync.finances import FinanceService
from bandsync.firestore_store import FirestoreDocumentStore
from bandsync.groups import GroupService
from bandsync.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from bandsync.records import RecordService
from bandsync.store import DocumentStore, InMemoryDocumentStore
from bandsync.users import UserDirectory

logger = logging.getLogger(__name__)

_firebase_app: firebase_admin.App | None = None
_store: DocumentStore | None = None
_identity: IdentityProvider | None = None
_users: UserDirectory | None = None
_auth_service: AuthService | None = None
_group_service: GroupService | None = None
_chat_service: ChatService | None = None
_record_service: RecordService | None = None
_finance_service: FinanceService | None = None
_activity_service: ActivityService | None = None


def _use_in_memory() -> bool:
    settings = get_settings()
    return settings.use_in_memory_backends or not settings.firebase_project_id


def get_firebase_app() -> firebase_admin.App:
    global _firebase_app
    if _firebase_app:
        return _firebase_app

    settings = get_settings()
    try:
        _firebase_app = firebase_admin.get_app()
    except ValueError:
        cred = (
            credentials.Certificate(settings.firebase_credentials_path)
            if settings.firebase_credentials_path
            else credentials.ApplicationDefault()
        )
        _firebase_app = firebase_admin.initialize_app(
            cred, {"projectId": settings.firebase_project_id}
        )
    logger.info("Firebase app initialised for %s", settings.firebase_project_id)
    return _firebase_app


def get_store() -> DocumentStore:
    """
    Return a singleton store so listeners and transactions share one client.
    """
    global _store
    if _store:
        return _store

    settings = get_settings()
    if _use_in_memory():
        _store = InMemoryDocumentStore(max_attempts=settings.transaction_max_attempts)
    else:
        _store = FirestoreDocumentStore(
            firestore.client(app=get_firebase_app()),
            max_attempts=settings.transaction_max_attempts,
        )
    return _store


def get_identity_provider() -> IdentityProvider:
    global _identity
    if _identity:
        return _identity

    if _use_in_memory():
        _identity = InMemoryIdentityProvider()
    else:
        _identity = FirebaseIdentityProvider(
            get_settings().firebase_web_api_key, app=get_firebase_app()
        )
    return _identity


def get_user_directory() -> UserDirectory:
    global _users
    if _users:
        return _users
    _users = UserDirectory(
        get_store(), lookup_batch_size=get_settings().lookup_batch_size
    )
    return _users


def get_auth_service() -> AuthService:
    global _auth_service
    if _auth_service:
        return _auth_service
    _auth_service = AuthService(get_identity_provider(), get_store())
    return _auth_service


def get_group_service() -> GroupService:
    global _group_service
    if _group_service:
        return _group_service
    settings = get_settings()
    _group_service = GroupService(
        get_store(),
        get_user_directory(),
        invite_code_length=settings.invite_code_length,
        invite_code_max_attempts=settings.invite_code_max_attempts,
        allow_self_demotion=settings.allow_self_demotion,
    )
    return _group_service


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service:
        return _chat_service
    _chat_service = ChatService(get_store())
    return _chat_service


def get_record_service() -> RecordService:
    global _record_service
    if _record_service:
        return _record_service
    _record_service = RecordService(get_store())
    return _record_service


def get_finance_service() -> FinanceService:
    global _finance_service
    if _finance_service:
        return _finance_service
    _finance_service = FinanceService(get_store())
    return _finance_service


def get_activity_service() -> ActivityService:
    global _activity_service
    if _activity_service:
        return _activity_service
    _activity_service = ActivityService(get_group_service(), get_record_service())
    return _activity_service
