"""
taskhub/dependencies.py

Reusable FastAPI helpers that load a project or task and enforce the
project policy from taskhub.rbac before a route touches the data.
"""

from __future__ import annotations

from typing import List, Optional, Tuple
from urllib.parse import quote

from fastapi import HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from taskhub.auth_context import AuthContext
from taskhub.config import IS_DEV
from taskhub.models import Project, ProjectMember, Task, TaskAttachment
from taskhub.rbac import Capability, Decision, decide
from taskhub.storage import AttachmentStorage, StorageBackendMismatch


def enforce(decision: Decision, *, capability: Capability, user_id: int, resource: str = "Project") -> None:
    """
    Translate a policy decision into an HTTP error.

    Raises:
        HTTPException(404): DENY_NOT_FOUND
        HTTPException(403): DENY_FORBIDDEN
    """
    if decision == Decision.ALLOW:
        if IS_DEV:
            print(f"[AUTHZ] Granted: capability={capability.value}, user_id={user_id}")
        return

    if decision == Decision.DENY_NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"{resource} not found")

    print(f"[AUTHZ] Denied: capability={capability.value}, user_id={user_id}")
    raise HTTPException(status_code=403, detail="Access denied")


def authorize_project(db: Session, project_id: int, ctx: AuthContext, capability: Capability) -> Project:
    """Load a project and require ``capability`` on it."""
    project = db.get(Project, project_id)
    enforce(decide(project, ctx.user_id, capability), capability=capability, user_id=ctx.user_id)
    return project


def authorize_task(
    db: Session,
    task_id: int,
    ctx: AuthContext,
    capability: Capability,
    *,
    attachment: Optional[TaskAttachment] = None,
) -> Tuple[Task, Project]:
    """
    Load a task, resolve its owning project and require ``capability``.

    A missing task and a missing project are both 404, never 403.
    """
    task = db.get(Task, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")

    project = db.get(Project, task.project_id)
    decision = decide(project, ctx.user_id, capability, task=task, attachment=attachment)
    enforce(decision, capability=capability, user_id=ctx.user_id)
    return task, project


def projects_for_user(db: Session, user_id: int) -> List[Project]:
    """Projects the user owns or is listed in, newest first."""
    return (
        db.query(Project)
        .filter(or_(Project.owner_id == user_id, Project.members.any(ProjectMember.user_id == user_id)))
        .order_by(Project.created_at.desc(), Project.id.desc())
        .all()
    )


def commit_or_500(db: Session, action: str) -> None:
    """
    Commit the request session.

    Raises:
        HTTPException(500): Database error (the session is rolled back first)
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        print(f"[DB] Commit failed during {action}: {e}")
        raise HTTPException(status_code=500, detail="Database error")


def get_storage(request: Request) -> AttachmentStorage:
    """The attachment storage constructed at application startup."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(status_code=503, detail="Attachment storage not initialized")
    return storage


def content_disposition(filename: str) -> str:
    """``attachment`` disposition with an ASCII fallback and the RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "ignore").decode().replace('"', "").replace("\\", "") or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def stream_attachment(attachment: TaskAttachment, storage: AttachmentStorage) -> StreamingResponse:
    """
    Stream an attachment's bytes from the active backend.

    Raises:
        StorageBackendMismatch: Attachment was written by the other backend
        StoredObjectNotFound: Bytes are missing
    """
    if attachment.storage_backend != storage.name:
        raise StorageBackendMismatch(
            f"Attachment stored in '{attachment.storage_backend}' but active storage is '{storage.name}'"
        )

    chunks = storage.open(attachment.storage_ref)
    return StreamingResponse(
        chunks,
        media_type=attachment.mimetype,
        headers={
            "Content-Disposition": content_disposition(attachment.filename),
            "Content-Length": str(attachment.size),
        },
    )
