"""Unit tests for the in-memory document store.

Tests for:
- User CRUD and email uniqueness
- Token list mutations
- Owner-scoped task operations and listing
- Copy semantics and JSON snapshot persistence
"""

from datetime import datetime, timedelta

import pytest

from taskkeep.storage.common import DocumentStore
from taskkeep.storage.errors import ConstraintViolation
from taskkeep.storage.memory import MemoryStore
from taskkeep.storage.postgres import PostgresStore


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def test_user(memory_store):
    """Create a test user."""
    return memory_store.create_user("Alice", "alice@example.com", "hash", age=30)


@pytest.fixture
def other_user(memory_store):
    return memory_store.create_user("Bob", "bob@example.com", "hash")


class TestUsers:
    def test_create_and_get(self, memory_store, test_user):
        fetched = memory_store.get_user(test_user.id)
        assert fetched.email == "alice@example.com"
        assert fetched.age == 30
        assert fetched.tokens == []
        assert fetched.has_avatar is False

    def test_get_by_email(self, memory_store, test_user):
        assert memory_store.get_user_by_email("alice@example.com").id == test_user.id
        assert memory_store.get_user_by_email("missing@example.com") is None

    def test_duplicate_email_rejected(self, memory_store, test_user):
        with pytest.raises(ConstraintViolation) as exc:
            memory_store.create_user("Other", "alice@example.com", "hash")
        assert exc.value.detail == {"field": "email"}

    def test_save_user_rejects_taken_email(self, memory_store, test_user, other_user):
        other_user.email = "alice@example.com"
        with pytest.raises(ConstraintViolation):
            memory_store.save_user(other_user)

    def test_returned_users_are_copies(self, memory_store, test_user):
        """Mutating a returned user does not touch stored state until saved."""
        fetched = memory_store.get_user(test_user.id)
        fetched.name = "Mallory"
        fetched.tokens.append("sneaky")

        stored = memory_store.get_user(test_user.id)
        assert stored.name == "Alice"
        assert stored.tokens == []

    def test_save_user_keeps_stored_tokens(self, memory_store, test_user):
        memory_store.add_user_token(test_user.id, "t1")
        stale = memory_store.get_user(test_user.id)
        memory_store.add_user_token(test_user.id, "t2")

        stale.name = "Alice B"
        saved = memory_store.save_user(stale)

        assert saved.name == "Alice B"
        assert saved.tokens == ["t1", "t2"]

    def test_delete_user(self, memory_store, test_user):
        assert memory_store.delete_user(test_user.id) is True
        assert memory_store.get_user(test_user.id) is None
        assert memory_store.delete_user(test_user.id) is False


class TestTokens:
    def test_add_and_find(self, memory_store, test_user):
        memory_store.add_user_token(test_user.id, "t1")
        assert memory_store.find_user_by_token(test_user.id, "t1").id == test_user.id
        assert memory_store.find_user_by_token(test_user.id, "t2") is None

    def test_add_is_unique(self, memory_store, test_user):
        memory_store.add_user_token(test_user.id, "t1")
        user = memory_store.add_user_token(test_user.id, "t1")
        assert user.tokens == ["t1"]

    def test_remove(self, memory_store, test_user):
        memory_store.add_user_token(test_user.id, "t1")
        memory_store.add_user_token(test_user.id, "t2")
        user = memory_store.remove_user_token(test_user.id, "t1")
        assert user.tokens == ["t2"]

    def test_clear_reports_count(self, memory_store, test_user):
        for token in ("t1", "t2", "t3"):
            memory_store.add_user_token(test_user.id, token)
        user, revoked = memory_store.clear_user_tokens(test_user.id)
        assert revoked == 3
        assert user.tokens == []

    def test_unknown_user(self, memory_store):
        assert memory_store.add_user_token("missing", "t1") is None
        assert memory_store.remove_user_token("missing", "t1") is None
        assert memory_store.clear_user_tokens("missing") == (None, 0)


class TestTasks:
    def test_create_requires_existing_owner(self, memory_store):
        with pytest.raises(ConstraintViolation):
            memory_store.create_task("missing", "buy milk")

    def test_get_is_owner_scoped(self, memory_store, test_user, other_user):
        task = memory_store.create_task(test_user.id, "buy milk")
        assert memory_store.get_task(task.id, owner_id=test_user.id).description == "buy milk"
        assert memory_store.get_task(task.id, owner_id=other_user.id) is None

    def test_delete_is_owner_scoped(self, memory_store, test_user, other_user):
        task = memory_store.create_task(test_user.id, "buy milk")
        assert memory_store.delete_task(task.id, owner_id=other_user.id) is None
        assert memory_store.delete_task(task.id, owner_id=test_user.id).id == task.id
        assert memory_store.get_task(task.id, owner_id=test_user.id) is None

    def test_save_task_cannot_change_owner(self, memory_store, test_user, other_user):
        task = memory_store.create_task(test_user.id, "buy milk")
        task.owner_id = other_user.id
        with pytest.raises(ConstraintViolation):
            memory_store.save_task(task)

    def test_list_filters_and_pages(self, memory_store, test_user, other_user):
        base = datetime(2024, 1, 1)
        for i in range(5):
            task = memory_store.create_task(test_user.id, f"task {i}", completed=i % 2 == 0)
            # deterministic ordering
            memory_store.tasks[task.id].created_at = base + timedelta(minutes=i)
        memory_store.create_task(other_user.id, "not mine")

        everything = memory_store.list_tasks(test_user.id)
        assert [t.description for t in everything] == [f"task {i}" for i in range(5)]

        done = memory_store.list_tasks(test_user.id, completed=True)
        assert [t.description for t in done] == ["task 0", "task 2", "task 4"]

        page = memory_store.list_tasks(test_user.id, limit=2, skip=1)
        assert [t.description for t in page] == ["task 1", "task 2"]

        newest_first = memory_store.list_tasks(
            test_user.id, sort_by="created_at", descending=True
        )
        assert newest_first[0].description == "task 4"

    def test_delete_tasks_by_owner(self, memory_store, test_user, other_user):
        for i in range(3):
            memory_store.create_task(test_user.id, f"task {i}")
        memory_store.create_task(other_user.id, "keep me")

        assert memory_store.delete_tasks_by_owner(test_user.id) == 3
        assert memory_store.delete_tasks_by_owner(test_user.id) == 0
        assert len(memory_store.list_tasks(other_user.id)) == 1


class TestPersistence:
    def test_state_survives_reload(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        user = store.create_user("Alice", "alice@example.com", "hash")
        store.add_user_token(user.id, "t1")
        user = store.get_user(user.id)
        user.avatar = b"\x89PNG fake"
        store.save_user(user)
        task = store.create_task(user.id, "buy milk")

        reloaded = MemoryStore(fs_root=str(tmp_path))

        restored = reloaded.get_user(user.id)
        assert restored.email == "alice@example.com"
        assert restored.tokens == ["t1"]
        assert restored.avatar == b"\x89PNG fake"
        assert reloaded.get_task(task.id, owner_id=user.id).description == "buy milk"
        assert (tmp_path / "state" / "taskkeep_store.json").exists()

    def test_persist_disabled_writes_nothing(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path / "off"), persist=False)
        store.create_user("Alice", "alice@example.com", "hash")
        assert not (tmp_path / "off").exists()


class TestStoreProtocol:
    @pytest.mark.parametrize("backend", [MemoryStore, PostgresStore])
    def test_backends_provide_every_service_call(self, backend):
        """Both stores cover the auth, user and task service protocols."""
        required = [name for name in dir(DocumentStore) if not name.startswith("_")]
        assert "find_user_by_token" in required
        assert "delete_tasks_by_owner" in required
        for name in required:
            assert callable(getattr(backend, name, None)), name
