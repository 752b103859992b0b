from __future__ import annotations

import base64
import json
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from taskkeep.logging import get_logger
from taskkeep.storage.errors import ConstraintViolation
from taskkeep.storage.models import TASK_SORT_FIELDS, Task, User


def _copy_user(user: User) -> User:
    return replace(user, tokens=list(user.tokens))


def _copy_task(task: Task) -> Task:
    return replace(task)


class MemoryStore:
    """Dict-backed document store with a JSON snapshot on disk.

    Reads hand out copies, so a caller only changes stored state through an
    explicit save or token call.
    """

    def __init__(self, fs_root: str = "/tmp/taskkeep", *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.tasks: Dict[str, Task] = {}
        # RLock so helpers can nest inside public operations
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.persist = persist
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "taskkeep_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def _email_taken(self, email: str, *, exclude_id: Optional[str] = None) -> bool:
        return any(
            existing.email == email and existing.id != exclude_id
            for existing in self.users.values()
        )

    # users
    def create_user(
        self, name: str, email: str, password_hash: str, age: Optional[int] = None
    ) -> User:
        with self._data_lock:
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(name=name, email=email, password_hash=password_hash, age=age)
            self.users[user.id] = user
            self._persist_state()
            return _copy_user(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return _copy_user(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return _copy_user(user) if user else None

    def find_user_by_token(self, user_id: str, token: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or token not in user.tokens:
                return None
            return _copy_user(user)

    def save_user(self, user: User) -> User:
        with self._data_lock:
            existing = self.users.get(user.id)
            if not existing:
                raise ConstraintViolation("user does not exist", {"user_id": user.id})
            if self._email_taken(user.email, exclude_id=user.id):
                raise ConstraintViolation("email already exists", {"field": "email"})
            stored = _copy_user(user)
            # tokens only change through the token calls
            stored.tokens = list(existing.tokens)
            stored.updated_at = datetime.utcnow()
            self.users[user.id] = stored
            self._persist_state()
            return _copy_user(stored)

    def add_user_token(self, user_id: str, token: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if token not in user.tokens:
                user.tokens.append(token)
                self._persist_state()
            return _copy_user(user)

    def remove_user_token(self, user_id: str, token: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if token in user.tokens:
                user.tokens = [t for t in user.tokens if t != token]
                self._persist_state()
            return _copy_user(user)

    def clear_user_tokens(self, user_id: str) -> Tuple[Optional[User], int]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None, 0
            revoked = len(user.tokens)
            user.tokens = []
            if revoked:
                self._persist_state()
            return _copy_user(user), revoked

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if self.users.pop(user_id, None) is None:
                return False
            self._persist_state()
            return True

    # tasks
    def create_task(
        self, owner_id: str, description: str, completed: bool = False
    ) -> Task:
        with self._data_lock:
            if owner_id not in self.users:
                raise ConstraintViolation("owner does not exist", {"owner_id": owner_id})
            task = Task.new(owner_id=owner_id, description=description, completed=completed)
            self.tasks[task.id] = task
            self._persist_state()
            return _copy_task(task)

    def get_task(self, task_id: str, *, owner_id: str) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task or task.owner_id != owner_id:
                return None
            return _copy_task(task)

    def list_tasks(
        self,
        owner_id: str,
        *,
        completed: Optional[bool] = None,
        limit: Optional[int] = None,
        skip: int = 0,
        sort_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Task]:
        with self._data_lock:
            results = [
                t
                for t in self.tasks.values()
                if t.owner_id == owner_id and (completed is None or t.completed == completed)
            ]
            if sort_by in TASK_SORT_FIELDS:
                results.sort(key=lambda t: getattr(t, sort_by), reverse=descending)
            else:
                results.sort(key=lambda t: t.created_at)
            start = max(skip, 0)
            end = start + limit if limit else None
            return [_copy_task(t) for t in results[start:end]]

    def save_task(self, task: Task) -> Task:
        with self._data_lock:
            existing = self.tasks.get(task.id)
            if not existing:
                raise ConstraintViolation("task does not exist", {"task_id": task.id})
            if existing.owner_id != task.owner_id:
                raise ConstraintViolation("task owner is immutable", {"task_id": task.id})
            stored = _copy_task(task)
            stored.updated_at = datetime.utcnow()
            self.tasks[task.id] = stored
            self._persist_state()
            return _copy_task(stored)

    def delete_task(self, task_id: str, *, owner_id: str) -> Optional[Task]:
        with self._data_lock:
            task = self.tasks.get(task_id)
            if not task or task.owner_id != owner_id:
                return None
            self.tasks.pop(task_id, None)
            self._persist_state()
            return _copy_task(task)

    def delete_tasks_by_owner(self, owner_id: str) -> int:
        with self._data_lock:
            owned = [tid for tid, t in self.tasks.items() if t.owner_id == owner_id]
            for tid in owned:
                self.tasks.pop(tid, None)
            if owned:
                self._persist_state()
            return len(owned)

    # snapshot
    def _persist_state(self) -> None:
        if not self.persist:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "tasks": [self._serialize_task(t) for t in self.tasks.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.tasks = {t["id"]: self._deserialize_task(t) for t in data.get("tasks", [])}
        self.logger.info(
            "memory_store_loaded", users=len(self.users), tasks=len(self.tasks)
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "password_hash": user.password_hash,
            "age": user.age,
            "tokens": list(user.tokens),
            "avatar": base64.b64encode(user.avatar).decode() if user.avatar else None,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        raw_avatar = data.get("avatar")
        return User(
            id=str(data["id"]),
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            age=data.get("age"),
            tokens=list(data.get("tokens") or []),
            avatar=base64.b64decode(raw_avatar) if raw_avatar else None,
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at", data["created_at"])),
        )

    def _serialize_task(self, task: Task) -> dict:
        return {
            "id": task.id,
            "owner_id": task.owner_id,
            "description": task.description,
            "completed": task.completed,
            "created_at": self._serialize_datetime(task.created_at),
            "updated_at": self._serialize_datetime(task.updated_at),
        }

    def _deserialize_task(self, data: dict) -> Task:
        return Task(
            id=str(data["id"]),
            owner_id=str(data["owner_id"]),
            description=data["description"],
            completed=bool(data.get("completed", False)),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at", data["created_at"])),
        )
