"""Account deletion removes the user's tasks before the user itself."""

import pytest

from taskkeep.service.auth import AuthService
from taskkeep.service.errors import InvalidTokenError, NotFoundError
from taskkeep.service.tasks import TaskService
from taskkeep.service.tokens import TokenCodec
from taskkeep.service.users import UserService
from taskkeep.storage.memory import MemoryStore

SECRET = "cascade-test-secret-0123456789-abcdefgh"


@pytest.fixture
def memory_store(tmp_path):
    return MemoryStore(fs_root=str(tmp_path))


@pytest.fixture
def services(memory_store):
    auth = AuthService(memory_store, TokenCodec(SECRET))
    tasks = TaskService(memory_store)
    users = UserService(memory_store, auth, tasks)
    return auth, tasks, users


async def _register(users, name, email):
    return await users.register(name=name, email=email, password="longenough1")


class TestTaskOwnership:
    async def test_other_users_task_is_not_found(self, services):
        _, tasks, users = services
        alice = await _register(users, "Alice", "alice@example.com")
        bob = await _register(users, "Bob", "bob@example.com")
        task = await tasks.create(alice.id, "buy milk")

        with pytest.raises(NotFoundError) as read_exc:
            await tasks.get(bob.id, task.id)
        with pytest.raises(NotFoundError):
            await tasks.update(bob.id, task.id, {"completed": True})
        with pytest.raises(NotFoundError):
            await tasks.delete(bob.id, task.id)
        with pytest.raises(NotFoundError) as missing_exc:
            await tasks.get(bob.id, "no-such-task")

        # foreign and missing tasks are indistinguishable
        assert read_exc.value.message == missing_exc.value.message == "task not found"
        assert (await tasks.get(alice.id, task.id)).completed is False

    async def test_task_lifecycle(self, services):
        _, tasks, users = services
        alice = await _register(users, "Alice", "alice@example.com")

        task = await tasks.create(alice.id, "  buy milk  ")
        assert task.description == "buy milk"
        assert (await tasks.get(alice.id, task.id)).completed is False

        await tasks.update(alice.id, task.id, {"completed": True})
        assert (await tasks.get(alice.id, task.id)).completed is True

        await tasks.delete(alice.id, task.id)
        with pytest.raises(NotFoundError):
            await tasks.get(alice.id, task.id)


class TestDeleteAccount:
    async def test_deletes_owned_tasks_only(self, services, memory_store):
        _, tasks, users = services
        alice = await _register(users, "Alice", "alice@example.com")
        bob = await _register(users, "Bob", "bob@example.com")
        for i in range(3):
            await tasks.create(alice.id, f"alice {i}")
        bob_task = await tasks.create(bob.id, "bob's task")

        deleted = await users.delete_account(alice)

        assert deleted == 3
        assert memory_store.get_user(alice.id) is None
        assert memory_store.list_tasks(alice.id) == []
        assert (await tasks.get(bob.id, bob_task.id)).description == "bob's task"

    async def test_user_without_tasks(self, services, memory_store):
        _, _, users = services
        alice = await _register(users, "Alice", "alice@example.com")

        assert await users.delete_account(alice) == 0
        assert memory_store.get_user(alice.id) is None

    async def test_deleted_users_tokens_stop_working(self, services):
        auth, _, users = services
        alice = await _register(users, "Alice", "alice@example.com")
        token = await auth.issue_token(alice)

        await users.delete_account(alice)

        with pytest.raises(InvalidTokenError):
            await auth.authenticate(f"Bearer {token}")

    async def test_cascade_failure_keeps_user(self, services, memory_store, monkeypatch):
        _, tasks, users = services
        alice = await _register(users, "Alice", "alice@example.com")
        await tasks.create(alice.id, "buy milk")

        def _boom(owner_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(memory_store, "delete_tasks_by_owner", _boom)

        with pytest.raises(RuntimeError):
            await users.delete_account(alice)

        assert memory_store.get_user(alice.id) is not None
        monkeypatch.undo()

        # retry succeeds once the store recovers
        assert await users.delete_account(alice) == 1
        assert memory_store.get_user(alice.id) is None

    async def test_delete_owned_by_is_idempotent(self, services):
        _, tasks, users = services
        alice = await _register(users, "Alice", "alice@example.com")
        await tasks.create(alice.id, "buy milk")

        assert await tasks.delete_owned_by(alice.id) == 1
        assert await tasks.delete_owned_by(alice.id) == 0
