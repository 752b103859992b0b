from __future__ import annotations

from typing import Any, List, Mapping, Optional, Protocol, Tuple

from taskkeep.logging import get_logger
from taskkeep.service.errors import NotFoundError, ValidationError
from taskkeep.service.validation import validate_completed, validate_description
from taskkeep.storage.models import TASK_SORT_FIELDS, Task

logger = get_logger(__name__)

UPDATABLE_FIELDS = frozenset({"description", "completed"})

# Client-facing sort keys, camelCase accepted for older clients
_SORT_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


class TaskStore(Protocol):
    def create_task(
        self, owner_id: str, description: str, completed: bool = False
    ) -> Task: ...

    def get_task(self, task_id: str, *, owner_id: str) -> Optional[Task]: ...

    def list_tasks(
        self,
        owner_id: str,
        *,
        completed: Optional[bool] = None,
        limit: Optional[int] = None,
        skip: int = 0,
        sort_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Task]: ...

    def save_task(self, task: Task) -> Task: ...

    def delete_task(self, task_id: str, *, owner_id: str) -> Optional[Task]: ...

    def delete_tasks_by_owner(self, owner_id: str) -> int: ...


def parse_sort(sort_by: Optional[str]) -> Tuple[Optional[str], bool]:
    """Split ``field:asc|desc`` into a column name and a descending flag."""

    if not sort_by:
        return None, False
    field, _, direction = sort_by.partition(":")
    field = _SORT_ALIASES.get(field.strip(), field.strip())
    direction = direction.strip().lower() or "asc"
    if field not in TASK_SORT_FIELDS:
        raise ValidationError(f"cannot sort by '{field}'", field="sortBy")
    if direction not in {"asc", "desc"}:
        raise ValidationError("sort direction must be asc or desc", field="sortBy")
    return field, direction == "desc"


class TaskService:
    """Tasks scoped to their owner.

    Every lookup is keyed on ``(task_id, owner_id)``, so another user's task
    is indistinguishable from a missing one.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        default_page_size: int = 100,
        max_page_size: int = 500,
    ) -> None:
        self.store = store
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.logger = logger

    async def create(
        self, owner_id: str, description: Any, completed: Any = False
    ) -> Task:
        task = self.store.create_task(
            owner_id,
            validate_description(description),
            validate_completed(completed),
        )
        self.logger.info("task_created", user_id=owner_id, task_id=task.id)
        return task

    async def list(
        self,
        owner_id: str,
        *,
        completed: Optional[bool] = None,
        limit: Optional[int] = None,
        skip: int = 0,
        sort_by: Optional[str] = None,
    ) -> List[Task]:
        if limit is not None and limit < 0:
            raise ValidationError("limit must be non-negative", field="limit")
        if skip < 0:
            raise ValidationError("skip must be non-negative", field="skip")
        field, descending = parse_sort(sort_by)
        page_size = min(limit or self.default_page_size, self.max_page_size)
        return self.store.list_tasks(
            owner_id,
            completed=completed,
            limit=page_size,
            skip=skip,
            sort_by=field,
            descending=descending,
        )

    async def get(self, owner_id: str, task_id: str) -> Task:
        task = self.store.get_task(task_id, owner_id=owner_id)
        if not task:
            raise NotFoundError("task not found", detail={"task_id": task_id})
        return task

    async def update(
        self, owner_id: str, task_id: str, updates: Mapping[str, Any]
    ) -> Task:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "invalid updates", detail={"fields": sorted(unknown)}
            )
        task = await self.get(owner_id, task_id)
        if "description" in updates:
            task.description = validate_description(updates["description"])
        if "completed" in updates:
            task.completed = validate_completed(updates["completed"])
        return self.store.save_task(task)

    async def delete(self, owner_id: str, task_id: str) -> Task:
        task = self.store.delete_task(task_id, owner_id=owner_id)
        if not task:
            raise NotFoundError("task not found", detail={"task_id": task_id})
        self.logger.info("task_deleted", user_id=owner_id, task_id=task_id)
        return task

    async def delete_owned_by(self, user_id: str) -> int:
        """Delete every task owned by ``user_id``; safe to call repeatedly."""

        deleted = self.store.delete_tasks_by_owner(user_id)
        self.logger.info("tasks_deleted_for_owner", user_id=user_id, deleted=deleted)
        return deleted


__all__ = ["TaskService", "TaskStore", "UPDATABLE_FIELDS", "parse_sort"]
