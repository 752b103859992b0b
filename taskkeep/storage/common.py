from __future__ import annotations

from typing import Protocol

from taskkeep.service.auth import AuthStore
from taskkeep.service.tasks import TaskStore
from taskkeep.service.users import UserStore


class DocumentStore(AuthStore, UserStore, TaskStore, Protocol):
    """Everything the services need from a persistence backend."""
