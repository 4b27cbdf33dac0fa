"""
Shared fixtures: an organization with an admin, a manager and two employees,
in-memory stores, and a FastAPI app wired to them.
"""

from __future__ import annotations

import secrets
import uuid

import pytest
from fastapi.testclient import TestClient

from fakes import (
    FakeCommentStore,
    FakeNotificationStore,
    FakeSessionStore,
    FakeTaskStore,
    FakeUserStore,
    make_user,
    session_headers,
)
from taskdeck.core.auth import (
    get_comment_store,
    get_notification_store,
    get_session_store,
    get_task_store,
    get_user_store,
)
from taskdeck.core.connections import ConnectionRegistry
from taskdeck.main import create_app


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def admin(org_id):
    return make_user(org_id, "Ada", "Admin", role="admin")


@pytest.fixture
def manager(org_id):
    return make_user(org_id, "Maria", "Garcia", role="manager")


@pytest.fixture
def employee(org_id):
    return make_user(org_id, "John", "Doe")


@pytest.fixture
def colleague(org_id):
    return make_user(org_id, "Jane", "Roe", email="jane.roe@example.com")


@pytest.fixture
def sessions() -> FakeSessionStore:
    return FakeSessionStore()


@pytest.fixture
def users(admin, manager, employee, colleague) -> FakeUserStore:
    return FakeUserStore(admin, manager, employee, colleague)


@pytest.fixture
def tasks() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture
def comments() -> FakeCommentStore:
    return FakeCommentStore()


@pytest.fixture
def notifications() -> FakeNotificationStore:
    return FakeNotificationStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def app(sessions, users, tasks, comments, notifications):
    application = create_app()
    application.dependency_overrides[get_session_store] = lambda: sessions
    application.dependency_overrides[get_user_store] = lambda: users
    application.dependency_overrides[get_task_store] = lambda: tasks
    application.dependency_overrides[get_comment_store] = lambda: comments
    application.dependency_overrides[get_notification_store] = lambda: notifications
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login_as(sessions):
    """Return request headers carrying a fresh session for ``user``."""

    def _login(user) -> dict[str, str]:
        session_id = secrets.token_urlsafe(16)
        sessions.sessions[session_id] = {"user_id": str(user.id)}
        return session_headers(session_id)

    return _login

