"""
Integration tests for the task endpoints.

Covers:
- Create / list / get / update / delete with role checks
- Organization scoping (404 for other tenants' tasks)
- Column changes append to the end and maintain completed_at
- Drag-and-drop reorder over HTTP, including 409 on a stale view
- Comments with assignee and @mention notifications
- Notification persistence failures never undo the task change
- Task statistics
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from fakes import make_task
from taskdeck.models.base import utcnow


@pytest.fixture
def seeded(tasks, org_id, manager, employee):
    a = tasks.add(make_task(org_id, manager.id, "a0000001000", title="Alpha", assignee_id=employee.id))
    b = tasks.add(make_task(org_id, manager.id, "a0000002000", title="Bravo"))
    c = tasks.add(make_task(org_id, manager.id, "a0000001000", status="done", title="Charlie"))
    return {"A": a, "B": b, "C": c}


class TestAuthRequired:
    def test_list_without_session(self, client):
        response = client.get("/api/tasks")
        assert response.status_code == 401
        assert response.json()["detail"] == "no_session_cookie"


class TestCreate:
    def test_manager_creates_task_at_end_of_column(self, client, login_as, manager, seeded, org_id):
        response = client.post(
            "/api/tasks", json={"title": "Delta", "priority": "high"}, headers=login_as(manager)
        )
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "todo"
        assert body["position"] == "a0000003000"
        assert body["creator_id"] == str(manager.id)
        assert body["organization_id"] == str(org_id)
        assert body["completed_at"] is None

    def test_created_done_task_has_completed_at(self, client, login_as, admin):
        response = client.post(
            "/api/tasks", json={"title": "Already done", "status": "done"}, headers=login_as(admin)
        )
        assert response.status_code == 201
        assert response.json()["completed_at"] is not None

    def test_employee_cannot_create(self, client, login_as, employee):
        response = client.post("/api/tasks", json={"title": "Nope"}, headers=login_as(employee))
        assert response.status_code == 403

    def test_assignee_must_be_in_organization(self, client, login_as, manager):
        response = client.post(
            "/api/tasks",
            json={"title": "Delta", "assignee_id": str(uuid.uuid4())},
            headers=login_as(manager),
        )
        assert response.status_code == 400

    def test_assignee_notified(self, client, login_as, manager, employee, notifications):
        response = client.post(
            "/api/tasks",
            json={"title": "Delta", "assignee_id": str(employee.id)},
            headers=login_as(manager),
        )
        assert response.status_code == 201
        assert [(n.user_id, n.type) for n in notifications.notifications] == [
            (employee.id, "task_assigned")
        ]

    def test_missing_csrf_token(self, client, login_as, manager):
        headers = login_as(manager)
        del headers["X-CSRF-Token"]
        response = client.post("/api/tasks", json={"title": "Delta"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "CSRF_VALIDATION_FAILED"


class TestRead:
    def test_list_ordered_by_column_then_position(self, client, login_as, employee, seeded):
        response = client.get("/api/tasks", headers=login_as(employee))
        assert response.status_code == 200
        assert [t["title"] for t in response.json()["data"]] == ["Charlie", "Alpha", "Bravo"]

    def test_filters(self, client, login_as, employee, seeded):
        headers = login_as(employee)
        todo = client.get("/api/tasks", params={"status": "todo"}, headers=headers).json()["data"]
        assert [t["title"] for t in todo] == ["Alpha", "Bravo"]

        mine = client.get(
            "/api/tasks", params={"assignee_id": str(employee.id)}, headers=headers
        ).json()["data"]
        assert [t["title"] for t in mine] == ["Alpha"]

        found = client.get("/api/tasks", params={"search": "brav"}, headers=headers).json()["data"]
        assert [t["title"] for t in found] == ["Bravo"]

    def test_other_organizations_are_invisible(self, client, login_as, employee, tasks, manager):
        foreign = tasks.add(make_task(uuid.uuid4(), manager.id, title="Secret"))
        headers = login_as(employee)
        assert client.get(f"/api/tasks/{foreign.id}", headers=headers).status_code == 404
        listed = client.get("/api/tasks", headers=headers).json()["data"]
        assert all(t["id"] != str(foreign.id) for t in listed)

    def test_get_one(self, client, login_as, employee, seeded):
        response = client.get(f"/api/tasks/{seeded['A'].id}", headers=login_as(employee))
        assert response.status_code == 200
        assert response.json()["title"] == "Alpha"

    def test_stats(self, client, login_as, employee, seeded, tasks, org_id, manager):
        tasks.add(
            make_task(
                org_id, manager.id, "a0000003000", title="Late", due_date=utcnow() - timedelta(days=1)
            )
        )
        response = client.get("/api/tasks/stats", headers=login_as(employee))
        assert response.status_code == 200
        assert response.json() == {"total": 4, "todo": 3, "in_progress": 0, "done": 1, "overdue": 1}


class TestUpdate:
    def test_assignee_updates_fields(self, client, login_as, employee, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}",
            json={"title": "Alpha v2", "description": "More detail"},
            headers=login_as(employee),
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Alpha v2"
        assert response.json()["description"] == "More detail"

    def test_unrelated_employee_forbidden(self, client, login_as, colleague, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}", json={"title": "Hijack"}, headers=login_as(colleague)
        )
        assert response.status_code == 403

    def test_status_change_appends_and_completes(self, client, login_as, manager, seeded, notifications, employee):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}", json={"status": "done"}, headers=login_as(manager)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "done"
        assert body["position"] == "a0000002000"
        assert body["completed_at"] is not None
        assert [(n.user_id, n.type) for n in notifications.notifications] == [
            (employee.id, "task_status_changed")
        ]

    def test_reopen_clears_completed_at(self, client, login_as, manager, seeded):
        seeded["C"].completed_at = utcnow()
        response = client.patch(
            f"/api/tasks/{seeded['C'].id}", json={"status": "in_progress"}, headers=login_as(manager)
        )
        assert response.json()["completed_at"] is None

    def test_reassignment_notifies_new_assignee(self, client, login_as, manager, colleague, seeded, notifications):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}",
            json={"assignee_id": str(colleague.id)},
            headers=login_as(manager),
        )
        assert response.status_code == 200
        assert [(n.user_id, n.type) for n in notifications.notifications] == [
            (colleague.id, "task_assigned")
        ]

    def test_unassign(self, client, login_as, manager, seeded, notifications):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}", json={"assignee_id": None}, headers=login_as(manager)
        )
        assert response.json()["assignee_id"] is None
        assert notifications.notifications == []

    def test_notification_failure_keeps_the_update(self, client, login_as, manager, seeded, notifications, tasks):
        notifications.fail = True
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}", json={"status": "in_progress"}, headers=login_as(manager)
        )
        assert response.status_code == 200
        assert tasks.tasks[seeded["A"].id].status == "in_progress"


class TestDelete:
    def test_manager_deletes(self, client, login_as, manager, seeded, tasks):
        response = client.delete(f"/api/tasks/{seeded['B'].id}", headers=login_as(manager))
        assert response.status_code == 200
        assert seeded["B"].id not in tasks.tasks

    def test_employee_cannot_delete(self, client, login_as, employee, seeded):
        response = client.delete(f"/api/tasks/{seeded['A'].id}", headers=login_as(employee))
        assert response.status_code == 403

    def test_unknown_task(self, client, login_as, manager):
        response = client.delete(f"/api/tasks/{uuid.uuid4()}", headers=login_as(manager))
        assert response.status_code == 404


class TestReorder:
    def test_move_to_top(self, client, login_as, manager, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['B'].id}/reorder",
            json={"after_position": "a0000001000"},
            headers=login_as(manager),
        )
        assert response.status_code == 200
        assert response.json()["position"] < "a0000001000"

    def test_move_across_columns(self, client, login_as, manager, employee, seeded, notifications):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}/reorder",
            json={"status": "done", "after_position": "a0000001000"},
            headers=login_as(manager),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "done"
        assert body["completed_at"] is not None
        assert [(n.user_id, n.type) for n in notifications.notifications] == [
            (employee.id, "task_status_changed")
        ]

    def test_stale_view_conflicts(self, client, login_as, manager, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}/reorder",
            json={"before_position": "a0000005000"},
            headers=login_as(manager),
        )
        assert response.status_code == 409

    def test_assignee_may_move_own_task(self, client, login_as, employee, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}/reorder",
            json={"before_position": "a0000002000"},
            headers=login_as(employee),
        )
        assert response.status_code == 200
        assert response.json()["position"] == "a0000003000"

    def test_unrelated_employee_cannot_move(self, client, login_as, colleague, seeded):
        response = client.patch(
            f"/api/tasks/{seeded['A'].id}/reorder",
            json={"before_position": "a0000002000"},
            headers=login_as(colleague),
        )
        assert response.status_code == 403


class TestComments:
    def test_comment_notifies_assignee_and_mentions(
        self, client, login_as, manager, employee, colleague, seeded, notifications, comments
    ):
        response = client.post(
            f"/api/tasks/{seeded['A'].id}/comments",
            json={"content": 'Ready? cc @"Jane Roe"'},
            headers=login_as(manager),
        )
        assert response.status_code == 201
        assert len(comments.comments) == 1
        kinds = {(n.user_id, n.type) for n in notifications.notifications}
        assert kinds == {(employee.id, "task_comment"), (colleague.id, "mention")}
        mention = next(n for n in notifications.notifications if n.type == "mention")
        assert mention.comment_id == comments.comments[0].id

    def test_list_comments(self, client, login_as, employee, seeded, comments):
        headers = login_as(employee)
        client.post(f"/api/tasks/{seeded['A'].id}/comments", json={"content": "first"}, headers=headers)
        client.post(f"/api/tasks/{seeded['A'].id}/comments", json={"content": "second"}, headers=headers)
        response = client.get(f"/api/tasks/{seeded['A'].id}/comments", headers=headers)
        assert [c["content"] for c in response.json()] == ["first", "second"]

    def test_empty_comment_rejected(self, client, login_as, employee, seeded):
        response = client.post(
            f"/api/tasks/{seeded['A'].id}/comments", json={"content": ""}, headers=login_as(employee)
        )
        assert response.status_code == 422
