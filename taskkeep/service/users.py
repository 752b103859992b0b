from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from taskkeep.logging import get_logger
from taskkeep.service.auth import AuthService
from taskkeep.service.avatars import normalize_avatar
from taskkeep.service.errors import NotFoundError, ValidationError
from taskkeep.service.tasks import TaskService
from taskkeep.service.validation import (
    validate_age,
    validate_email,
    validate_name,
    validate_password,
)
from taskkeep.storage.models import User

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "email", "password", "age"})


class UserStore(Protocol):
    def create_user(
        self, name: str, email: str, password_hash: str, age: Optional[int] = None
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def save_user(self, user: User) -> User: ...

    def delete_user(self, user_id: str) -> bool: ...


class UserService:
    """Account lifecycle: registration, profile edits, avatars and deletion."""

    def __init__(
        self,
        store: UserStore,
        auth: AuthService,
        tasks: TaskService,
        *,
        avatar_max_bytes: int = 10_000_000,
        avatar_size: int = 250,
    ) -> None:
        self.store = store
        self.auth = auth
        self.tasks = tasks
        self.avatar_max_bytes = avatar_max_bytes
        self.avatar_size = avatar_size
        self.logger = logger

    async def register(
        self, name: Any, email: Any, password: Any, age: Any = None
    ) -> User:
        # every rule runs before the password is hashed
        clean_name = validate_name(name)
        clean_email = validate_email(email)
        clean_password = validate_password(password)
        clean_age = validate_age(age)
        user = self.store.create_user(
            clean_name,
            clean_email,
            self.auth.hash_password(clean_password),
            age=clean_age,
        )
        self.logger.info("user_registered", user_id=user.id)
        return user

    async def update_profile(self, user: User, updates: Mapping[str, Any]) -> User:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "invalid updates", detail={"fields": sorted(unknown)}
            )
        if "name" in updates:
            user.name = validate_name(updates["name"])
        if "email" in updates:
            user.email = validate_email(updates["email"])
        if "age" in updates:
            user.age = validate_age(updates["age"])
        if "password" in updates:
            new_password = validate_password(updates["password"])
            # unchanged password keeps its hash
            if not self.auth.verify_password(user.password_hash, new_password):
                user.password_hash = self.auth.hash_password(new_password)
        saved = self.store.save_user(user)
        self.logger.info("user_updated", user_id=user.id, fields=sorted(updates))
        return saved

    async def delete_account(self, user: User) -> int:
        """Delete the user's tasks, then the user.

        If removing the tasks fails the user document is left in place, so
        the deletion can be retried. Returns the number of tasks removed.
        """

        try:
            deleted_tasks = await self.tasks.delete_owned_by(user.id)
        except Exception as exc:
            self.logger.error(
                "user_delete_cascade_failed",
                user_id=user.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        self.store.delete_user(user.id)
        self.logger.info("user_deleted", user_id=user.id, tasks_deleted=deleted_tasks)
        return deleted_tasks

    async def set_avatar(
        self, user: User, filename: Optional[str], data: bytes
    ) -> User:
        user.avatar = normalize_avatar(
            filename,
            data,
            max_bytes=self.avatar_max_bytes,
            size=self.avatar_size,
        )
        saved = self.store.save_user(user)
        self.logger.info("avatar_updated", user_id=user.id, size=len(user.avatar))
        return saved

    async def clear_avatar(self, user: User) -> User:
        user.avatar = None
        return self.store.save_user(user)

    async def get_avatar(self, user_id: str) -> bytes:
        user = self.store.get_user(user_id)
        if not user or not user.avatar:
            raise NotFoundError("avatar not found", detail={"user_id": user_id})
        return user.avatar


__all__ = ["UPDATABLE_FIELDS", "UserService", "UserStore"]
