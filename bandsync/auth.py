"""
Auth gateway: sign-up, sign-in, sign-out and password reset.
"""

from __future__ import annotations

import logging

from bandsync.errors import InvalidArgument, PartialFailureError, TransportError
from bandsync.firebase_constants import USERS_COLLECTION
from bandsync.identity import AuthSession, IdentityProvider
from bandsync.models import User, UserRole, decode_user, encode
from bandsync.store import DocumentStore, Transaction

logger = logging.getLogger(__name__)


def _require(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidArgument(f"{label} is required")
    return value


class AuthService:
    def __init__(self, identity: IdentityProvider, store: DocumentStore):
        self.identity = identity
        self.store = store

    def register(
        self, email: str, password: str, name: str, phone: str = ""
    ) -> tuple[User, AuthSession]:
        """
        Create the identity, then the profile document (role Member, no group).

        The two writes live in different systems. If the profile write fails
        the identity already exists, so ``PartialFailureError`` is raised with
        the uid; ``ensure_profile`` finishes the job on retry.
        """
        email = _require(email, "Email").lower()
        name = _require(name, "Name")
        if not password:
            raise InvalidArgument("Password is required")

        uid = self.identity.create_user(email, password)
        logger.info("Created identity %s for %s", uid, email)
        try:
            user = self.ensure_profile(uid, email, name, phone)
        except TransportError as exc:
            logger.warning("Profile write failed for %s after sign-up: %s", uid, exc)
            raise PartialFailureError(
                "Account created but the profile could not be saved; retry to finish sign-up",
                completed="identity",
                pending="profile",
                resource_id=uid,
            ) from exc
        session = self.identity.sign_in(email, password)
        return user, session

    def ensure_profile(self, uid: str, email: str, name: str, phone: str = "") -> User:
        """Create the profile document if missing. Idempotent."""

        def _txn(transaction: Transaction) -> User:
            existing = decode_user(transaction.get(USERS_COLLECTION, uid))
            if existing is not None:
                return existing
            user = User(
                id=uid,
                email=email,
                name=name,
                phone=(phone or "").strip(),
                group_id=None,
                role=UserRole.MEMBER,
            )
            transaction.set(USERS_COLLECTION, uid, encode(user))
            return user

        return self.store.run_transaction(_txn)

    def login(self, email: str, password: str) -> AuthSession:
        email = _require(email, "Email").lower()
        session = self.identity.sign_in(email, password)
        logger.info("User %s signed in", session.uid)
        return session

    def logout(self, uid: str) -> None:
        self.identity.sign_out(uid)
        logger.info("User %s signed out", uid)

    def reset_password(self, email: str) -> None:
        email = _require(email, "Email").lower()
        self.identity.send_password_reset(email)
        logger.info("Password reset requested for %s", email)

    def verify_token(self, token: str) -> str:
        return self.identity.verify_token(token)
