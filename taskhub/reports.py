"""
taskhub/reports.py

Task statistics and PDF project summary reports.

compute_task_stats() is the single implementation of the aggregate formulas
used by the stats endpoints and the report. render_project_report() is a pure
read-and-render step: it returns PDF bytes and persists nothing.
"""

from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from xml.sax.saxutils import escape

from taskhub.models import Project, Task, TaskPriority, TaskStatus, utc_now
from taskhub.rbac import member_role


def compute_task_stats(tasks: Iterable[Task], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Aggregate counts by status and priority, overdue count and hour totals.

    Missing estimated/actual hours count as 0.
    """
    now = now or utc_now()
    tasks = list(tasks)
    return {
        "total_tasks": len(tasks),
        "completed_tasks": sum(1 for t in tasks if t.status == TaskStatus.completed),
        "in_progress_tasks": sum(1 for t in tasks if t.status == TaskStatus.in_progress),
        "todo_tasks": sum(1 for t in tasks if t.status == TaskStatus.todo),
        "high_priority_tasks": sum(1 for t in tasks if t.priority == TaskPriority.high),
        "medium_priority_tasks": sum(1 for t in tasks if t.priority == TaskPriority.medium),
        "low_priority_tasks": sum(1 for t in tasks if t.priority == TaskPriority.low),
        "overdue_tasks": sum(1 for t in tasks if t.is_overdue(now)),
        "total_estimated_hours": float(sum(t.estimated_hours or 0 for t in tasks)),
        "total_actual_hours": float(sum(t.actual_hours or 0 for t in tasks)),
    }


def _fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def _fmt_hours(value: Optional[float]) -> str:
    return f"{value:g}" if value is not None else "-"


def _user_label(user: Any) -> str:
    if user is None:
        return "Unassigned"
    return f"{user.name} <{user.email}>"


def build_report_sections(project: Project, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Collect everything the PDF shows, in display order.

    Roster: owner first, then listed members (the owner is not repeated).
    Tasks: in the project's task-list order.
    """
    now = now or utc_now()
    tasks = list(project.tasks)

    roster: List[Dict[str, str]] = [
        {"name": project.owner.name, "email": project.owner.email, "role": "Owner"}
    ]
    for member in project.members:
        if member.user_id == project.owner_id:
            continue
        roster.append({
            "name": member.user.name,
            "email": member.user.email,
            "role": member_role(project, member.user_id).value,
        })

    task_blocks = [
        {
            "title": t.title,
            "status": t.status.value,
            "priority": t.priority.value,
            "assignee": _user_label(t.assignee),
            "reporter": _user_label(t.reporter),
            "due_date": _fmt_date(t.due_date),
            "overdue": t.is_overdue(now),
            "estimated_hours": _fmt_hours(t.estimated_hours),
            "actual_hours": _fmt_hours(t.actual_hours),
            "tags": ", ".join(t.tags or []) or "-",
            "description": t.description or "",
            "comments": len(t.comments),
            "attachments": len(t.attachments),
        }
        for t in tasks
    ]

    return {
        "metadata": {
            "name": project.name,
            "description": project.description or "",
            "status": project.status.value,
            "owner": _user_label(project.owner),
            "start_date": _fmt_date(project.start_date),
            "end_date": _fmt_date(project.end_date),
        },
        "roster": roster,
        "stats": compute_task_stats(tasks, now),
        "tasks": task_blocks,
        "generated_at": now.strftime("%Y-%m-%d %H:%M UTC"),
    }


_GRID = TableStyle([
    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#E8EAF6")),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
])

_KEY_VALUE = TableStyle([
    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
])


def render_project_report(project: Project, now: Optional[datetime] = None) -> bytes:
    """Render the project summary as PDF bytes."""
    sections = build_report_sections(project, now)
    styles = getSampleStyleSheet()
    body = styles["BodyText"]

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=f"Project Summary - {sections['metadata']['name']}",
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
    )

    story: list = [
        Paragraph("Project Summary Report", styles["Title"]),
        Paragraph(f"Generated {sections['generated_at']}", styles["Italic"]),
        Spacer(1, 6 * mm),
    ]

    meta = sections["metadata"]
    story.append(Paragraph("Project", styles["Heading2"]))
    meta_rows = [
        ["Name", Paragraph(escape(meta["name"]), body)],
        ["Description", Paragraph(escape(meta["description"]) or "-", body)],
        ["Status", meta["status"]],
        ["Owner", Paragraph(escape(meta["owner"]), body)],
        ["Start date", meta["start_date"]],
        ["End date", meta["end_date"]],
    ]
    story.append(Table(meta_rows, colWidths=[35 * mm, None], style=_KEY_VALUE))
    story.append(Spacer(1, 5 * mm))

    story.append(Paragraph("Members", styles["Heading2"]))
    roster_rows = [["Name", "Email", "Role"]] + [
        [Paragraph(escape(m["name"]), body), Paragraph(escape(m["email"]), body), m["role"]]
        for m in sections["roster"]
    ]
    story.append(Table(roster_rows, colWidths=[55 * mm, 75 * mm, 30 * mm], style=_GRID, repeatRows=1))
    story.append(Spacer(1, 5 * mm))

    stats = sections["stats"]
    story.append(Paragraph("Task Statistics", styles["Heading2"]))
    stats_rows = [
        ["Total tasks", stats["total_tasks"]],
        ["Completed", stats["completed_tasks"]],
        ["In progress", stats["in_progress_tasks"]],
        ["To-Do", stats["todo_tasks"]],
        ["High priority", stats["high_priority_tasks"]],
        ["Medium priority", stats["medium_priority_tasks"]],
        ["Low priority", stats["low_priority_tasks"]],
        ["Overdue", stats["overdue_tasks"]],
        ["Estimated hours", f"{stats['total_estimated_hours']:g}"],
        ["Actual hours", f"{stats['total_actual_hours']:g}"],
    ]
    story.append(Table([[k, str(v)] for k, v in stats_rows], colWidths=[45 * mm, 30 * mm], style=_KEY_VALUE))
    story.append(Spacer(1, 5 * mm))

    story.append(Paragraph("Tasks", styles["Heading2"]))
    if not sections["tasks"]:
        story.append(Paragraph("No tasks.", body))

    for index, block in enumerate(sections["tasks"], start=1):
        heading = f"{index}. {escape(block['title'])}"
        if block["overdue"]:
            heading += ' <font color="red">(overdue)</font>'
        story.append(Paragraph(heading, styles["Heading3"]))
        rows = [
            ["Status", block["status"], "Priority", block["priority"]],
            ["Assignee", Paragraph(escape(block["assignee"]), body), "Reporter", Paragraph(escape(block["reporter"]), body)],
            ["Due date", block["due_date"], "Tags", Paragraph(escape(block["tags"]), body)],
            ["Estimated h", block["estimated_hours"], "Actual h", block["actual_hours"]],
            ["Comments", str(block["comments"]), "Attachments", str(block["attachments"])],
        ]
        story.append(Table(rows, colWidths=[25 * mm, 55 * mm, 25 * mm, 55 * mm], style=_GRID))
        if block["description"]:
            story.append(Spacer(1, 2 * mm))
            story.append(Paragraph(escape(block["description"]), body))
        story.append(Spacer(1, 4 * mm))

    doc.build(story)
    return buffer.getvalue()
