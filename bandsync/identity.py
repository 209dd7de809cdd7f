"""
Identity provider abstraction: Firebase Authentication for production and an
in-memory provider for development and tests.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import requests
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from bandsync.errors import Conflict, InvalidArgument, NotFound, TransportError, Unauthorized

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
MIN_PASSWORD_LENGTH = 6

_INVALID_CREDENTIALS = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "USER_DISABLED",
}


@dataclass
class AuthSession:
    uid: str
    id_token: str
    refresh_token: Optional[str] = None


class IdentityProvider(Protocol):
    """Operations the services need from the identity provider."""

    def create_user(self, email: str, password: str) -> str:
        ...

    def sign_in(self, email: str, password: str) -> AuthSession:
        ...

    def sign_out(self, uid: str) -> None:
        ...

    def send_password_reset(self, email: str) -> None:
        ...

    def verify_token(self, token: str) -> str:
        ...


def _hash_password(password: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    """Hash a password with PBKDF2. If ``salt`` is None, a new salt is generated."""
    if salt is None:
        salt = os.urandom(16)
    hashed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
    return salt, hashed


@dataclass
class _Account:
    uid: str
    email: str
    salt: bytes
    password_hash: bytes


@dataclass
class InMemoryIdentityProvider:
    """Test double for the identity provider."""

    accounts: Dict[str, _Account] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)
    password_resets: List[str] = field(default_factory=list)

    def create_user(self, email: str, password: str) -> str:
        email = email.strip().lower()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidArgument(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if email in self.accounts:
            raise Conflict("The email address is already in use")
        salt, hashed = _hash_password(password)
        uid = uuid.uuid4().hex[:28]
        self.accounts[email] = _Account(uid, email, salt, hashed)
        return uid

    def sign_in(self, email: str, password: str) -> AuthSession:
        account = self.accounts.get(email.strip().lower())
        if account is None:
            raise Unauthorized("Invalid email or password")
        _, hashed = _hash_password(password, account.salt)
        if not hmac.compare_digest(hashed, account.password_hash):
            raise Unauthorized("Invalid email or password")
        token = secrets.token_hex(32)
        self.tokens[token] = account.uid
        return AuthSession(uid=account.uid, id_token=token)

    def sign_out(self, uid: str) -> None:
        for token in [t for t, owner in self.tokens.items() if owner == uid]:
            del self.tokens[token]

    def send_password_reset(self, email: str) -> None:
        email = email.strip().lower()
        if email not in self.accounts:
            raise NotFound("No user with this email")
        self.password_resets.append(email)

    def verify_token(self, token: str) -> str:
        uid = self.tokens.get(token)
        if uid is None:
            raise Unauthorized("Invalid or expired session token")
        return uid


class FirebaseIdentityProvider:
    """
    Firebase Authentication.

    Account management and token verification use the Admin SDK. Password
    sign-in and reset mails are client operations in Firebase, so they go
    through the Identity Toolkit REST API with the project's web API key.
    """

    def __init__(self, api_key: Optional[str], *, app: Any = None, timeout: float = 10.0):
        self.api_key = api_key
        self.app = app
        self.timeout = timeout

    def _post(self, method: str, payload: dict) -> dict:
        if not self.api_key:
            raise TransportError("FIREBASE_WEB_API_KEY is not configured")
        try:
            response = requests.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:{method}",
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Identity Toolkit %s failed: %s", method, exc)
            raise TransportError(f"Identity service unavailable: {exc}") from exc
        try:
            body = response.json() if response.content else {}
        except ValueError:
            # Proxies answer with HTML error pages.
            if not 400 <= response.status_code < 500:
                raise TransportError(
                    f"Identity service returned HTTP {response.status_code} without JSON"
                ) from None
            body = {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message", "") or response.reason
            # Messages look like "INVALID_PASSWORD" or "WEAK_PASSWORD : ...".
            code = message.split(":", 1)[0].strip()
            if code in _INVALID_CREDENTIALS:
                if method == "sendOobCode" and code == "EMAIL_NOT_FOUND":
                    raise NotFound("No user with this email")
                raise Unauthorized("Invalid email or password")
            if code == "INVALID_EMAIL":
                raise InvalidArgument("Invalid email address")
            if response.status_code >= 500:
                raise TransportError(f"Identity service error: {message}")
            raise InvalidArgument(message)
        return body

    def create_user(self, email: str, password: str) -> str:
        try:
            user = firebase_auth.create_user(email=email, password=password, app=self.app)
        except firebase_auth.EmailAlreadyExistsError as exc:
            raise Conflict("The email address is already in use") from exc
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
        except firebase_exceptions.FirebaseError as exc:
            raise TransportError(f"Identity service error: {exc}") from exc
        return user.uid

    def sign_in(self, email: str, password: str) -> AuthSession:
        body = self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return AuthSession(
            uid=body["localId"],
            id_token=body["idToken"],
            refresh_token=body.get("refreshToken"),
        )

    def sign_out(self, uid: str) -> None:
        try:
            firebase_auth.revoke_refresh_tokens(uid, app=self.app)
        except firebase_auth.UserNotFoundError as exc:
            raise NotFound(f"Unknown user {uid}") from exc
        except firebase_exceptions.FirebaseError as exc:
            raise TransportError(f"Identity service error: {exc}") from exc

    def send_password_reset(self, email: str) -> None:
        self._post("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

    def verify_token(self, token: str) -> str:
        try:
            claims = firebase_auth.verify_id_token(token, app=self.app, check_revoked=True)
        except (
            firebase_auth.InvalidIdTokenError,
            firebase_auth.ExpiredIdTokenError,
            firebase_auth.RevokedIdTokenError,
            firebase_auth.UserDisabledError,
        ) as exc:
            raise Unauthorized("Invalid or expired session token") from exc
        except ValueError as exc:
            raise Unauthorized("Invalid or expired session token") from exc
        except firebase_exceptions.FirebaseError as exc:
            raise TransportError(f"Identity service error: {exc}") from exc
        return claims["uid"]
