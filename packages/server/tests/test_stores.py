"""
Tests for the SQLModel stores against an on-disk SQLite database.

Covers:
- Column ordering by position and the single-transaction position rewrite
- Task filters, statistics and cascading delete
- Member lookup and role changes
- Notification queries scoped to the recipient
- The local admin bootstrap script
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import taskdeck.models  # noqa: F401
from taskdeck.core.auth import verify_password
from taskdeck.core.errors import TaskNotFound
from taskdeck.models.base import utcnow
from taskdeck.models.organization import Organization
from taskdeck.models.task import Task
from taskdeck.models.user import User
from taskdeck.services.stores import (
    SqlCommentStore,
    SqlNotificationStore,
    SqlTaskStore,
    SqlUserStore,
)
from taskdeck.scripts.create_admin import create_admin
from taskdeck.services.tasks import ReorderCoordinator
from taskdeck_shared.schemas.tasks import TaskReorder


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskdeck.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def world(session):
    """One organization with two members, plus a stranger elsewhere."""
    org = Organization(name="Acme")
    other = Organization(name="Globex")
    alice = User(email="Alice@Acme.dev", first_name="Alice", last_name="Smith", role="manager", organization_id=org.id)
    bob = User(email="bob@acme.dev", first_name="Bob", last_name="Jones", organization_id=org.id)
    stranger = User(email="eve@globex.dev", first_name="Eve", organization_id=other.id)
    session.add_all([org, other, alice, bob, stranger])
    await session.commit()
    return {"org": org, "other": other, "alice": alice, "bob": bob, "stranger": stranger}


async def add_task(store, world, title, position, status="todo", **kwargs):
    return await store.create(
        Task(
            organization_id=world["org"].id,
            creator_id=world["alice"].id,
            title=title,
            status=status,
            position=position,
            **kwargs,
        )
    )


class TestSqlTaskStore:
    async def test_list_column_orders_by_position(self, session, world):
        store = SqlTaskStore(session)
        await add_task(store, world, "third", "a0000003000")
        await add_task(store, world, "first", "a0000001000")
        await add_task(store, world, "second", "a0000002000")
        await add_task(store, world, "elsewhere", "a0000000500", status="done")

        column = await store.list_column(world["org"].id, "todo")
        assert [t.title for t in column] == ["first", "second", "third"]

    async def test_update_applies_all_fields(self, session, world):
        store = SqlTaskStore(session)
        task = await add_task(store, world, "move me", "a0000001000")
        done_at = utcnow()

        updated = await store.update(
            task.id, {"status": "done", "position": "a0000005000", "completed_at": done_at}
        )
        assert updated.status == "done"
        assert updated.position == "a0000005000"
        assert updated.completed_at is not None

    async def test_update_rolls_back_position_rewrites(self, session, session_factory, world):
        store = SqlTaskStore(session)
        moving = await add_task(store, world, "moving", "a0000001000")
        low = await add_task(store, world, "low", "a0000002000")
        high = await add_task(store, world, "high", "a0000002001")

        with pytest.raises(IntegrityError):
            await store.update(
                moving.id,
                {"position": "a0000001500", "title": None},
                positions={low.id: "a0000001000", high.id: "a0000002000"},
            )

        async with session_factory() as fresh:
            column = await SqlTaskStore(fresh).list_column(world["org"].id, "todo")
        assert [(t.title, t.position) for t in column] == [
            ("moving", "a0000001000"),
            ("low", "a0000002000"),
            ("high", "a0000002001"),
        ]

    async def test_update_with_position_rewrites(self, session, world):
        store = SqlTaskStore(session)
        moving = await add_task(store, world, "moving", "a0000001000")
        low = await add_task(store, world, "low", "a0000002000")
        high = await add_task(store, world, "high", "a0000002001")

        await store.update(
            moving.id,
            {"position": "a0000001500"},
            positions={low.id: "a0000001000", high.id: "a0000002000"},
        )

        column = await store.list_column(world["org"].id, "todo")
        assert [(t.title, t.position) for t in column] == [
            ("low", "a0000001000"),
            ("moving", "a0000001500"),
            ("high", "a0000002000"),
        ]

    async def test_update_unknown_task(self, session, world):
        with pytest.raises(TaskNotFound):
            await SqlTaskStore(session).update(uuid.uuid4(), {"title": "x"})

    async def test_update_positions(self, session, world):
        store = SqlTaskStore(session)
        a = await add_task(store, world, "a", "a0000001000")
        b = await add_task(store, world, "b", "a0000001001")

        await store.update_positions({a.id: "a0000002000", b.id: "a0000001000"})

        column = await store.list_column(world["org"].id, "todo")
        assert [(t.title, t.position) for t in column] == [
            ("b", "a0000001000"),
            ("a", "a0000002000"),
        ]

    async def test_reorder_with_rebalance_end_to_end(self, session, world):
        store = SqlTaskStore(session)
        low = await add_task(store, world, "low", "a0000001000")
        await add_task(store, world, "high", "a0000001001")
        moving = await add_task(store, world, "moving", "a0000009000")

        await ReorderCoordinator(store).reorder(
            moving.id,
            TaskReorder(before_position=low.position, after_position="a0000001001"),
            world["org"].id,
        )

        column = await store.list_column(world["org"].id, "todo")
        assert [t.title for t in column] == ["low", "moving", "high"]

    async def test_list_for_org_filters(self, session, world):
        store = SqlTaskStore(session)
        await add_task(store, world, "Write report", "a0000001000", assignee_id=world["bob"].id)
        await add_task(store, world, "Review budget", "a0000002000", description="quarterly report")
        await add_task(store, world, "Ship", "a0000001000", status="done")
        await store.create(
            Task(organization_id=world["other"].id, creator_id=world["stranger"].id, title="Foreign report")
        )

        org_id = world["org"].id
        assert len(await store.list_for_org(org_id)) == 3
        assert [t.title for t in await store.list_for_org(org_id, status="done")] == ["Ship"]
        assert [t.title for t in await store.list_for_org(org_id, assignee_id=world["bob"].id)] == [
            "Write report"
        ]
        found = {t.title for t in await store.list_for_org(org_id, search="REPORT")}
        assert found == {"Write report", "Review budget"}

    async def test_stats(self, session, world):
        store = SqlTaskStore(session)
        await add_task(store, world, "late", "a0000001000", due_date=utcnow() - timedelta(days=2))
        await add_task(store, world, "later", "a0000002000", due_date=utcnow() + timedelta(days=2))
        await add_task(store, world, "busy", "a0000001000", status="in_progress")
        await add_task(
            store, world, "done late", "a0000001000", status="done", due_date=utcnow() - timedelta(days=2)
        )

        assert await store.stats(world["org"].id) == {
            "total": 4,
            "todo": 2,
            "in_progress": 1,
            "done": 1,
            "overdue": 1,
        }

    async def test_delete_cascades(self, session, session_factory, world):
        tasks = SqlTaskStore(session)
        comments = SqlCommentStore(session)
        notifications = SqlNotificationStore(session)
        task = await add_task(tasks, world, "doomed", "a0000001000")
        comment = await comments.create(task.id, world["bob"].id, "bye")
        await notifications.create(
            {
                "user_id": world["bob"].id,
                "organization_id": world["org"].id,
                "type": "task_comment",
                "title": "t",
                "message": "m",
                "task_id": task.id,
                "comment_id": comment.id,
            }
        )

        await tasks.delete(task.id)

        async with session_factory() as fresh:
            assert await SqlTaskStore(fresh).get_by_id(task.id) is None
        assert await comments.list_for_task(task.id) == []
        assert await notifications.unread_count(world["bob"].id, world["org"].id) == 0


class TestSqlUserStore:
    async def test_get_by_email_is_case_insensitive(self, session_factory, world):
        users = SqlUserStore(session_factory)
        found = await users.get_by_email("alice@acme.DEV ")
        assert found is not None
        assert found.id == world["alice"].id

    async def test_list_members_is_org_scoped(self, session_factory, world):
        users = SqlUserStore(session_factory)
        members = await users.list_members(world["org"].id)
        assert {u.first_name for u in members} == {"Alice", "Bob"}

    async def test_update_role(self, session_factory, world):
        users = SqlUserStore(session_factory)
        updated = await users.update_role(world["bob"].id, "admin")
        assert updated.role == "admin"
        assert (await users.get_by_id(world["bob"].id)).role == "admin"
        assert await users.update_role(uuid.uuid4(), "admin") is None


class TestSqlNotificationStore:
    @pytest.fixture
    async def store(self, session, world):
        store = SqlNotificationStore(session)
        for title in ("one", "two", "three"):
            await store.create(
                {
                    "user_id": world["bob"].id,
                    "organization_id": world["org"].id,
                    "type": "task_assigned",
                    "title": title,
                    "message": title,
                }
            )
        await store.create(
            {
                "user_id": world["alice"].id,
                "organization_id": world["org"].id,
                "type": "mention",
                "title": "alice's",
                "message": "m",
            }
        )
        return store

    async def test_list_and_count(self, store, world):
        bob, org = world["bob"].id, world["org"].id
        assert len(await store.list_for_user(bob, org)) == 3
        assert len(await store.list_for_user(bob, org, limit=2)) == 2
        assert await store.unread_count(bob, org) == 3

    async def test_mark_read_requires_ownership(self, store, world):
        bob, alice, org = world["bob"].id, world["alice"].id, world["org"].id
        target = (await store.list_for_user(bob, org))[0]

        assert await store.mark_read(target.id, alice) is None
        marked = await store.mark_read(target.id, bob)
        assert marked.is_read
        assert await store.unread_count(bob, org) == 2
        assert len(await store.list_for_user(bob, org, unread_only=True)) == 2

    async def test_mark_all_read(self, store, world):
        bob, alice, org = world["bob"].id, world["alice"].id, world["org"].id
        assert await store.mark_all_read(bob, org) == 3
        assert await store.unread_count(bob, org) == 0
        assert await store.unread_count(alice, org) == 1

    async def test_delete_requires_ownership(self, store, world):
        bob, alice, org = world["bob"].id, world["alice"].id, world["org"].id
        target = (await store.list_for_user(bob, org))[0]
        assert await store.delete(target.id, alice) is False
        assert await store.delete(target.id, bob) is True
        assert len(await store.list_for_user(bob, org)) == 2


class TestCreateAdmin:
    async def test_creates_org_and_admin(self, session, session_factory):
        user = await create_admin(session, " Ada@Example.com", "secret", "Initech", first_name="Ada")
        await session.commit()

        stored = await SqlUserStore(session_factory).get_by_email("ada@example.com")
        assert stored.id == user.id
        assert stored.role == "admin"
        assert verify_password("secret", stored.password_hash)

    async def test_promotes_existing_user(self, session, session_factory, world):
        user = await create_admin(session, "bob@acme.dev", "newpass", "Acme")
        await session.commit()

        assert user.id == world["bob"].id
        assert user.organization_id == world["org"].id
        assert (await SqlUserStore(session_factory).get_by_id(user.id)).role == "admin"
