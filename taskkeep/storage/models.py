from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str
    age: Optional[int] = None
    tokens: List[str] = field(default_factory=list)
    avatar: Optional[bytes] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(
        cls, name: str, email: str, password_hash: str, age: Optional[int] = None
    ) -> "User":
        now = datetime.utcnow()
        return cls(
            id=_new_id(),
            name=name,
            email=email,
            password_hash=password_hash,
            age=age,
            created_at=now,
            updated_at=now,
        )

    @property
    def has_avatar(self) -> bool:
        return self.avatar is not None


@dataclass
class Task:
    id: str
    owner_id: str
    description: str
    completed: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, owner_id: str, description: str, completed: bool = False) -> "Task":
        now = datetime.utcnow()
        return cls(
            id=_new_id(),
            owner_id=owner_id,
            description=description,
            completed=completed,
            created_at=now,
            updated_at=now,
        )


# Fields a client may sort task listings by
TASK_SORT_FIELDS = frozenset({"created_at", "updated_at", "description", "completed"})
