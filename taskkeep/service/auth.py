from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from taskkeep.logging import get_logger
from taskkeep.service.errors import (
    InvalidCredentialsError,
    InvalidTokenError,
    MissingTokenError,
)
from taskkeep.service.tokens import InvalidSignature, TokenCodec
from taskkeep.service.validation import normalize_email
from taskkeep.storage.models import User

logger = get_logger(__name__)


class AuthStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def find_user_by_token(self, user_id: str, token: str) -> Optional[User]: ...

    def add_user_token(self, user_id: str, token: str) -> Optional[User]: ...

    def remove_user_token(self, user_id: str, token: str) -> Optional[User]: ...

    def clear_user_tokens(self, user_id: str) -> Tuple[Optional[User], int]: ...


@dataclass
class AuthContext:
    """Identity attached to a request that passed the auth gate."""

    user: User
    token: str

    @property
    def user_id(self) -> str:
        return self.user.id


class AuthService:
    """Password checks plus issuing, validating and revoking session tokens.

    A token is live only while its exact string sits in the owner's stored
    token list; the signature alone proves nothing about revocation.
    """

    def __init__(self, store: AuthStore, codec: TokenCodec) -> None:
        self.store: AuthStore = store
        self.codec = codec
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        # Verified against on unknown emails so both login failures cost a hash
        self._dummy_hash = self._pwd_hasher.hash(secrets.token_urlsafe(16))
        self.logger = logger

    # passwords
    def hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify_password(self, password_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            return False

    # sessions
    async def issue_token(self, user: User) -> str:
        token = self.codec.sign(user.id)
        stored = self.store.add_user_token(user.id, token)
        if stored is None:
            # user vanished between lookup and issue
            raise InvalidCredentialsError()
        user.tokens = list(stored.tokens)
        self.logger.info("token_issued", user_id=user.id, active_tokens=len(stored.tokens))
        return token

    async def login(self, email: str, password: str) -> User:
        """Return the user whose credentials match, without issuing a token.

        Unknown email and wrong password raise the same error.
        """

        user = self.store.get_user_by_email(normalize_email(email or ""))
        candidate = (password or "").strip()
        if not user:
            self.verify_password(self._dummy_hash, candidate)
            self.logger.info("login_failed", reason="credentials")
            raise InvalidCredentialsError()
        if not self.verify_password(user.password_hash, candidate):
            self.logger.info("login_failed", user_id=user.id, reason="credentials")
            raise InvalidCredentialsError()
        return user

    async def logout(self, user: User, token: str) -> None:
        stored = self.store.remove_user_token(user.id, token)
        if stored is not None:
            user.tokens = list(stored.tokens)
        self.logger.info("logout", user_id=user.id)

    async def logout_all(self, user: User) -> int:
        stored, revoked = self.store.clear_user_tokens(user.id)
        if stored is not None:
            user.tokens = list(stored.tokens)
        self.logger.info("logout_all", user_id=user.id, revoked=revoked)
        return revoked

    # gate
    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, credentials = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        token = credentials.strip()
        return token or None

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise MissingTokenError()
        try:
            user_id = self.codec.verify(token)
        except InvalidSignature:
            self.logger.info("auth_rejected", reason="signature")
            raise InvalidTokenError() from None
        user = self.store.find_user_by_token(user_id, token)
        if not user:
            self.logger.info("auth_rejected", user_id=user_id, reason="revoked")
            raise InvalidTokenError()
        return AuthContext(user=user, token=token)


__all__ = ["AuthContext", "AuthService", "AuthStore"]
