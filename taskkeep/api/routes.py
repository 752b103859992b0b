from __future__ import annotations

import asyncio
from typing import Callable, Optional

from fastapi import APIRouter, Depends, File, Header, Path, Query, Response, UploadFile

from taskkeep.api.schemas import (
    AccountDeletedResponse,
    AuthResponse,
    Envelope,
    LoginRequest,
    LogoutAllResponse,
    RegisterRequest,
    TaskCreateRequest,
    TaskListResponse,
    TaskResponse,
    TaskUpdateRequest,
    UserResponse,
    UserUpdateRequest,
)
from taskkeep.logging import get_logger
from taskkeep.service.auth import AuthContext
from taskkeep.service.errors import ValidationError
from taskkeep.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


async def get_principal(authorization: Optional[str] = Header(None)) -> AuthContext:
    """Resolve the bearer token on the request to a live session or raise 401."""
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


async def _notify(send: Callable[[str, str], bool], email: str, name: str) -> None:
    # mail problems are logged and never fail the request
    try:
        await asyncio.to_thread(send, email, name)
    except Exception as exc:
        logger.error(
            "email_dispatch_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )


# users


@router.post("/users", response_model=Envelope, status_code=201, tags=["users"])
async def register(body: RegisterRequest):
    """Create an account and sign it in.

    Sends a welcome email, then returns the new user with a session token.

    Raises:
        400: If a field fails validation
        409: If the email is already registered
    """
    runtime = get_runtime()
    user = await runtime.users.register(
        name=body.name, email=body.email, password=body.password, age=body.age
    )
    await _notify(runtime.email.send_welcome, user.email, user.name)
    token = await runtime.auth.issue_token(user)
    return Envelope(
        status="ok", data=AuthResponse(user=UserResponse.from_user(user), token=token)
    )


@router.post("/users/login", response_model=Envelope, tags=["users"])
async def login(body: LoginRequest):
    """Exchange email and password for a new session token.

    Raises:
        401: If the credentials do not match an account
    """
    runtime = get_runtime()
    user = await runtime.auth.login(body.email, body.password)
    token = await runtime.auth.issue_token(user)
    return Envelope(
        status="ok", data=AuthResponse(user=UserResponse.from_user(user), token=token)
    )


@router.post("/users/logout", response_model=Envelope, tags=["users"])
async def logout(principal: AuthContext = Depends(get_principal)):
    runtime = get_runtime()
    await runtime.auth.logout(principal.user, principal.token)
    return Envelope(status="ok")


@router.post("/users/logoutAll", response_model=Envelope, tags=["users"])
async def logout_all(principal: AuthContext = Depends(get_principal)):
    runtime = get_runtime()
    revoked = await runtime.auth.logout_all(principal.user)
    return Envelope(status="ok", data=LogoutAllResponse(revoked=revoked))


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def read_profile(principal: AuthContext = Depends(get_principal)):
    return Envelope(status="ok", data=UserResponse.from_user(principal.user))


@router.patch("/users/me", response_model=Envelope, tags=["users"])
async def update_profile(
    body: UserUpdateRequest, principal: AuthContext = Depends(get_principal)
):
    """Update name, email, password or age.

    Raises:
        400: If a field fails validation
        409: If the new email belongs to another account
        422: If the body names any other field
    """
    runtime = get_runtime()
    user = await runtime.users.update_profile(
        principal.user, body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.delete("/users/me", response_model=Envelope, tags=["users"])
async def delete_account(principal: AuthContext = Depends(get_principal)):
    """Delete the account and every task it owns, then send a goodbye email."""
    runtime = get_runtime()
    user = principal.user
    tasks_deleted = await runtime.users.delete_account(user)
    await _notify(runtime.email.send_cancellation, user.email, user.name)
    return Envelope(
        status="ok",
        data=AccountDeletedResponse(
            user=UserResponse.from_user(user), tasks_deleted=tasks_deleted
        ),
    )


@router.post("/users/me/avatar", response_model=Envelope, tags=["users"])
async def upload_avatar(
    avatar: UploadFile = File(...), principal: AuthContext = Depends(get_principal)
):
    runtime = get_runtime()
    max_bytes = max(1, runtime.settings.avatar_max_bytes)
    contents = await avatar.read(max_bytes + 1)
    if len(contents) > max_bytes:
        raise ValidationError("avatar too large", field="avatar", status_code=413)
    user = await runtime.users.set_avatar(principal.user, avatar.filename, contents)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.delete("/users/me/avatar", response_model=Envelope, tags=["users"])
async def delete_avatar(principal: AuthContext = Depends(get_principal)):
    runtime = get_runtime()
    user = await runtime.users.clear_avatar(principal.user)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.get("/users/{user_id}/avatar", tags=["users"])
async def read_avatar(user_id: str = Path(..., max_length=64)):
    runtime = get_runtime()
    data = await runtime.users.get_avatar(user_id)
    return Response(content=data, media_type="image/png")


# tasks


@router.post("/tasks", response_model=Envelope, status_code=201, tags=["tasks"])
async def create_task(
    body: TaskCreateRequest, principal: AuthContext = Depends(get_principal)
):
    runtime = get_runtime()
    task = await runtime.tasks.create(
        principal.user_id, body.description, completed=body.completed
    )
    return Envelope(status="ok", data=TaskResponse.from_task(task))


@router.get("/tasks", response_model=Envelope, tags=["tasks"])
async def list_tasks(
    completed: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    sort_by: Optional[str] = Query(None, alias="sortBy", max_length=64),
    principal: AuthContext = Depends(get_principal),
):
    """List the caller's tasks.

    ``sortBy`` takes ``field:asc`` or ``field:desc``; ``completed`` filters
    by status.
    """
    runtime = get_runtime()
    tasks = await runtime.tasks.list(
        principal.user_id,
        completed=completed,
        limit=limit,
        skip=skip,
        sort_by=sort_by,
    )
    items = [TaskResponse.from_task(task) for task in tasks]
    return Envelope(status="ok", data=TaskListResponse(items=items, count=len(items)))


@router.get("/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def read_task(
    task_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_principal),
):
    runtime = get_runtime()
    task = await runtime.tasks.get(principal.user_id, task_id)
    return Envelope(status="ok", data=TaskResponse.from_task(task))


@router.patch("/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def update_task(
    body: TaskUpdateRequest,
    task_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_principal),
):
    runtime = get_runtime()
    task = await runtime.tasks.update(
        principal.user_id, task_id, body.model_dump(exclude_unset=True)
    )
    return Envelope(status="ok", data=TaskResponse.from_task(task))


@router.delete("/tasks/{task_id}", response_model=Envelope, tags=["tasks"])
async def delete_task(
    task_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_principal),
):
    runtime = get_runtime()
    task = await runtime.tasks.delete(principal.user_id, task_id)
    return Envelope(status="ok", data=TaskResponse.from_task(task))
