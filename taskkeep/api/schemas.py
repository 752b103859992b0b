from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskkeep.logging import get_correlation_id
from taskkeep.storage.models import Task, User

# Upper bounds on raw request strings; content rules live in the services
MAX_STRING_LENGTH = 4096

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope wrapping every JSON response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class RegisterRequest(BaseModel):
    name: str = Field(..., max_length=MAX_STRING_LENGTH)
    email: str = Field(..., max_length=MAX_STRING_LENGTH)
    password: str = Field(..., max_length=MAX_STRING_LENGTH)
    age: Optional[int] = None


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=MAX_STRING_LENGTH)
    password: str = Field(..., max_length=MAX_STRING_LENGTH)


class UserUpdateRequest(BaseModel):
    """Profile fields a user may change; anything else is refused."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    email: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    password: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    age: Optional[int] = None


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    age: Optional[int] = None
    has_avatar: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            age=user.age,
            has_avatar=user.has_avatar,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


class LogoutAllResponse(BaseModel):
    revoked: int


class AccountDeletedResponse(BaseModel):
    user: UserResponse
    tasks_deleted: int


class TaskCreateRequest(BaseModel):
    description: str = Field(..., max_length=MAX_STRING_LENGTH)
    completed: bool = False


class TaskUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    completed: Optional[bool] = None


class TaskResponse(BaseModel):
    id: str
    owner_id: str
    description: str
    completed: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            owner_id=task.owner_id,
            description=task.description,
            completed=task.completed,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskListResponse(BaseModel):
    items: List[TaskResponse]
    count: int
