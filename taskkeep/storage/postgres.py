from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from taskkeep.logging import get_logger
from taskkeep.storage.errors import ConstraintViolation
from taskkeep.storage.models import TASK_SORT_FIELDS, Task, User


class PostgresStore:
    """Postgres-backed store for users and their tasks."""

    def __init__(self, dsn: str, fs_root: str) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` and ``task`` tables if they are missing.

        ``task.owner_id`` references ``app_user`` without ``ON DELETE CASCADE``:
        removing a user's tasks is the service layer's job, and the foreign key
        refuses to orphan any it missed.
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id UUID PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    age INTEGER,
                    tokens TEXT[] NOT NULL DEFAULT '{}',
                    avatar BYTEA,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS task (
                    id UUID PRIMARY KEY,
                    owner_id UUID NOT NULL REFERENCES app_user(id),
                    description TEXT NOT NULL,
                    completed BOOLEAN NOT NULL DEFAULT false,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS task_owner_idx ON task (owner_id, created_at)"
            )

    @staticmethod
    def _user_from_row(row: dict) -> User:
        avatar = row.get("avatar")
        return User(
            id=str(row["id"]),
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            age=row.get("age"),
            tokens=list(row.get("tokens") or []),
            avatar=bytes(avatar) if avatar is not None else None,
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    @staticmethod
    def _task_from_row(row: dict) -> Task:
        return Task(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            description=row["description"],
            completed=bool(row.get("completed", False)),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    @staticmethod
    def _is_uuid(value: str) -> bool:
        try:
            uuid.UUID(str(value))
        except (TypeError, ValueError):
            return False
        return True

    # users
    def create_user(
        self, name: str, email: str, password_hash: str, age: Optional[int] = None
    ) -> User:
        user = User.new(name=name, email=email, password_hash=password_hash, age=age)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, name, email, password_hash, age, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.name,
                        user.email,
                        user.password_hash,
                        user.age,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        if not self._is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def find_user_by_token(self, user_id: str, token: str) -> Optional[User]:
        if not self._is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s AND %s = ANY(tokens)",
                (user_id, token),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def save_user(self, user: User) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE app_user
                    SET name = %s, email = %s, password_hash = %s, age = %s,
                        avatar = %s, updated_at = now()
                    WHERE id = %s
                    RETURNING *
                    """,
                    (
                        user.name,
                        user.email,
                        user.password_hash,
                        user.age,
                        user.avatar,
                        user.id,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        if not row:
            raise ConstraintViolation("user does not exist", {"user_id": user.id})
        return self._user_from_row(row)

    def add_user_token(self, user_id: str, token: str) -> Optional[User]:
        if not self._is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET tokens = CASE WHEN %s = ANY(tokens) THEN tokens ELSE array_append(tokens, %s) END
                WHERE id = %s
                RETURNING *
                """,
                (token, token, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def remove_user_token(self, user_id: str, token: str) -> Optional[User]:
        if not self._is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET tokens = array_remove(tokens, %s) WHERE id = %s RETURNING *",
                (token, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def clear_user_tokens(self, user_id: str) -> Tuple[Optional[User], int]:
        if not self._is_uuid(user_id):
            return None, 0
        with self._connect() as conn:
            row = conn.execute(
                """
                WITH prior AS (
                    SELECT id, cardinality(tokens) AS revoked
                    FROM app_user WHERE id = %s FOR UPDATE
                )
                UPDATE app_user SET tokens = '{}'
                FROM prior
                WHERE app_user.id = prior.id
                RETURNING app_user.*, prior.revoked
                """,
                (user_id,),
            ).fetchone()
        if not row:
            return None, 0
        return self._user_from_row(row), int(row.get("revoked") or 0)

    def delete_user(self, user_id: str) -> bool:
        if not self._is_uuid(user_id):
            return False
        try:
            with self._connect() as conn:
                result = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
                return result.rowcount > 0
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user still owns tasks", {"user_id": user_id})

    # tasks
    def create_task(
        self, owner_id: str, description: str, completed: bool = False
    ) -> Task:
        if not self._is_uuid(owner_id):
            raise ConstraintViolation("owner does not exist", {"owner_id": owner_id})
        task = Task.new(owner_id=owner_id, description=description, completed=completed)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO task (id, owner_id, description, completed, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        task.id,
                        task.owner_id,
                        task.description,
                        task.completed,
                        task.created_at,
                        task.updated_at,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("owner does not exist", {"owner_id": owner_id})
        return task

    def get_task(self, task_id: str, *, owner_id: str) -> Optional[Task]:
        if not (self._is_uuid(task_id) and self._is_uuid(owner_id)):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM task WHERE id = %s AND owner_id = %s",
                (task_id, owner_id),
            ).fetchone()
        return self._task_from_row(row) if row else None

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
        if not self._is_uuid(owner_id):
            return []
        clauses = [sql.SQL("owner_id = %s")]
        params: List[Any] = [owner_id]
        if completed is not None:
            clauses.append(sql.SQL("completed = %s"))
            params.append(completed)
        if sort_by in TASK_SORT_FIELDS:
            order = sql.SQL("{} {}, id").format(
                sql.Identifier(sort_by), sql.SQL("DESC" if descending else "ASC")
            )
        else:
            order = sql.SQL("created_at ASC, id")
        query = sql.SQL("SELECT * FROM task WHERE {} ORDER BY {} OFFSET %s").format(
            sql.SQL(" AND ").join(clauses), order
        )
        params.append(max(skip, 0))
        if limit:
            query = query + sql.SQL(" LIMIT %s")
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._task_from_row(row) for row in rows]

    def save_task(self, task: Task) -> Task:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE task
                SET description = %s, completed = %s, updated_at = now()
                WHERE id = %s AND owner_id = %s
                RETURNING *
                """,
                (task.description, task.completed, task.id, task.owner_id),
            ).fetchone()
        if not row:
            raise ConstraintViolation("task does not exist", {"task_id": task.id})
        return self._task_from_row(row)

    def delete_task(self, task_id: str, *, owner_id: str) -> Optional[Task]:
        if not (self._is_uuid(task_id) and self._is_uuid(owner_id)):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "DELETE FROM task WHERE id = %s AND owner_id = %s RETURNING *",
                (task_id, owner_id),
            ).fetchone()
        return self._task_from_row(row) if row else None

    def delete_tasks_by_owner(self, owner_id: str) -> int:
        if not self._is_uuid(owner_id):
            return 0
        with self._connect() as conn:
            result = conn.execute("DELETE FROM task WHERE owner_id = %s", (owner_id,))
            return result.rowcount
