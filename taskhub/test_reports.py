"""
taskhub/test_reports.py

Task statistics formulas and the PDF project report.

Run:
    pytest taskhub/test_reports.py -v
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

from taskhub.conftest import auth, create_task, due_in
from taskhub.models import ProjectRole, ProjectStatus, TaskPriority, TaskStatus
from taskhub.reports import build_report_sections, compute_task_stats

NOW = datetime(2024, 6, 1, 12, 0, 0)


def make_task(status=TaskStatus.todo, priority=TaskPriority.medium, due=NOW + timedelta(days=1), est=None, act=None, **extra):
    task = SimpleNamespace(
        title=extra.get("title", "T"),
        description=None,
        status=status,
        priority=priority,
        due_date=due,
        estimated_hours=est,
        actual_hours=act,
        tags=[],
        assignee=None,
        reporter=None,
        comments=[],
        attachments=[],
    )
    task.is_overdue = lambda now=None: task.due_date < (now or NOW) and task.status != TaskStatus.completed
    return task


class TestComputeTaskStats:

    def test_empty(self):
        stats = compute_task_stats([], NOW)
        assert stats["total_tasks"] == 0
        assert stats["overdue_tasks"] == 0
        assert stats["total_estimated_hours"] == 0

    def test_counts_and_hours(self):
        tasks = [
            make_task(TaskStatus.todo, TaskPriority.high, est=2.5),
            make_task(TaskStatus.in_progress, TaskPriority.high, est=1, act=0.5),
            make_task(TaskStatus.completed, TaskPriority.low, act=3),
            make_task(TaskStatus.todo, TaskPriority.medium, due=NOW - timedelta(hours=1)),
            make_task(TaskStatus.completed, TaskPriority.medium, due=NOW - timedelta(days=5)),
        ]
        stats = compute_task_stats(tasks, NOW)

        assert stats == {
            "total_tasks": 5,
            "completed_tasks": 2,
            "in_progress_tasks": 1,
            "todo_tasks": 2,
            "high_priority_tasks": 2,
            "medium_priority_tasks": 2,
            "low_priority_tasks": 1,
            "overdue_tasks": 1,
            "total_estimated_hours": 3.5,
            "total_actual_hours": 3.5,
        }

    def test_due_exactly_now_is_not_overdue(self):
        assert compute_task_stats([make_task(due=NOW)], NOW)["overdue_tasks"] == 0


def test_report_sections_roster_owner_first_and_task_order():
    owner = SimpleNamespace(id=1, name="Olivia", email="o@example.com")
    member = SimpleNamespace(id=2, name="Mario", email="m@example.com")
    project = SimpleNamespace(
        name="Alpha",
        description=None,
        status=ProjectStatus.active,
        owner=owner,
        owner_id=1,
        start_date=NOW,
        end_date=None,
        members=[
            SimpleNamespace(user_id=2, user=member, role=ProjectRole.member),
            SimpleNamespace(user_id=1, user=owner, role=ProjectRole.manager),
        ],
        tasks=[make_task(title="first"), make_task(title="second", due=NOW - timedelta(days=1))],
    )

    sections = build_report_sections(project, NOW)

    assert [(r["name"], r["role"]) for r in sections["roster"]] == [("Olivia", "Owner"), ("Mario", "Member")]
    assert [t["title"] for t in sections["tasks"]] == ["first", "second"]
    assert [t["overdue"] for t in sections["tasks"]] == [False, True]
    assert sections["stats"]["overdue_tasks"] == 1
    assert sections["metadata"]["end_date"] == "-"


class TestReportEndpoint:

    def test_member_downloads_pdf(self, client, users, project):
        member = users["member"]
        create_task(client, member["token"], project["id"], member["id"], title="Write <docs> & ship", tags=["docs"])
        create_task(client, member["token"], project["id"], users["owner"]["id"], due_date=due_in(-2))

        for method in ("get", "post"):
            response = getattr(client, method)(f"/api/projects/{project['id']}/report", headers=auth(member["token"]))
            assert response.status_code == 200
            assert response.headers["content-type"] == "application/pdf"
            assert response.headers["content-disposition"].startswith("attachment")
            assert response.content.startswith(b"%PDF")

    def test_report_is_read_only(self, client, users, project):
        token = auth(users["owner"]["token"])
        before = client.get(f"/api/projects/{project['id']}", headers=token).json()
        client.get(f"/api/projects/{project['id']}/report", headers=token)
        after = client.get(f"/api/projects/{project['id']}", headers=token).json()
        assert before == after

    def test_outsider_cannot_download(self, client, users, project):
        response = client.get(f"/api/projects/{project['id']}/report", headers=auth(users["outsider"]["token"]))
        assert response.status_code == 403
