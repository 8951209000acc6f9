"""
taskhub/routes_tasks.py

Task CRUD, status changes, comments, attachments and task statistics.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- Task routes resolve the owning project through the task and apply the
  project policy before reading or mutating
- reporter_id and uploader come from the auth context only
- project_id and reporter are immutable (update schema forbids them)
- An upload whose record cannot be created never leaves stored bytes behind
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from taskhub.auth_context import AuthContext, require_auth_context
from taskhub.config import IS_DEV
from taskhub.db import get_db
from taskhub.dependencies import (
    authorize_project,
    authorize_task,
    commit_or_500,
    enforce,
    get_storage,
    stream_attachment,
)
from taskhub.models import Project, Task, TaskAttachment, TaskComment, TaskPriority, TaskStatus
from taskhub.rbac import Capability, decide, is_member
from taskhub.reports import compute_task_stats
from taskhub.schemas import (
    AttachmentResponse,
    CommentCreateRequest,
    TaskCreateRequest,
    TaskResponse,
    TaskStats,
    TaskStatusRequest,
    TaskUpdateRequest,
)
from taskhub.storage import AttachmentStorage, StorageBackendMismatch, validate_content_type

router = APIRouter(
    prefix="/api/tasks",
    tags=["tasks"],
)

# Fields that may be omitted from a PATCH but never cleared
REQUIRED_TASK_FIELDS = ("title", "status", "priority", "due_date", "assignee_id", "tags")


def _require_assignee_member(project: Project, assignee_id: int) -> None:
    if not is_member(project, assignee_id):
        raise HTTPException(status_code=400, detail="Assignee must be a project member")


def _delete_task_files(task: Task, storage: AttachmentStorage) -> int:
    """Remove the stored bytes of every attachment on ``task``. Returns the number removed."""
    removed = 0
    for attachment in task.attachments:
        if attachment.storage_backend != storage.name:
            print(
                f"[STORAGE] Skipping {attachment.storage_ref}: written by "
                f"{attachment.storage_backend}, active backend is {storage.name}"
            )
            continue
        if storage.delete(attachment.storage_ref):
            removed += 1
    return removed


# ========================================================================
# TASKS
# ========================================================================

@router.post("", response_model=TaskResponse, status_code=201)
def create_task(
    request: TaskCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskResponse:
    """
    Create a task and append it to its project's task list.

    Security:
    - Caller must be a project member
    - reporter = caller (never from the request body)
    - Assignee must be a project member

    Raises:
        HTTPException(400): Invalid input or assignee outside the project
        HTTPException(403): Caller is not a member
        HTTPException(404): Project not found
    """
    project = authorize_project(db, request.project_id, ctx, Capability.TASK_CREATE)
    _require_assignee_member(project, request.assignee_id)

    last_position = db.query(func.max(Task.position)).filter(Task.project_id == project.id).scalar()

    task = Task(
        title=request.title,
        description=request.description,
        assignee_id=request.assignee_id,
        reporter_id=ctx.user_id,
        status=request.status,
        priority=request.priority,
        due_date=request.due_date,
        tags=list(request.tags),
        estimated_hours=request.estimated_hours,
        actual_hours=request.actual_hours,
        position=(last_position or 0) + 1,
    )
    project.tasks.append(task)
    commit_or_500(db, "create_task")
    db.refresh(task)

    print(f"[TASKS] Created task_id={task.id}, project_id={project.id}, reporter_id={ctx.user_id}")
    return TaskResponse.model_validate(task)


@router.get("/project/{project_id}", response_model=List[TaskResponse])
def list_project_tasks(
    project_id: int,
    status: Optional[TaskStatus] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    assignee_id: Optional[int] = Query(None, ge=1),
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> List[TaskResponse]:
    """Tasks of a project, newest first, optionally filtered."""
    project = authorize_project(db, project_id, ctx, Capability.TASK_VIEW)

    query = db.query(Task).filter(Task.project_id == project.id)
    if status is not None:
        query = query.filter(Task.status == status)
    if priority is not None:
        query = query.filter(Task.priority == priority)
    if assignee_id is not None:
        query = query.filter(Task.assignee_id == assignee_id)

    tasks = query.order_by(Task.created_at.desc(), Task.id.desc()).all()
    return [TaskResponse.model_validate(t) for t in tasks]


@router.get("/project/{project_id}/stats", response_model=TaskStats)
def get_task_stats(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskStats:
    """Counts by status and priority, overdue count and hour totals."""
    project = authorize_project(db, project_id, ctx, Capability.TASK_VIEW)
    return TaskStats(**compute_task_stats(project.tasks))


@router.get("/user", response_model=List[TaskResponse])
def list_user_tasks(
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> List[TaskResponse]:
    """Tasks assigned to the caller in projects they still belong to, soonest due first."""
    tasks = (
        db.query(Task)
        .filter(Task.assignee_id == ctx.user_id)
        .order_by(Task.due_date.asc(), Task.id.asc())
        .all()
    )
    return [TaskResponse.model_validate(t) for t in tasks if is_member(t.project, ctx.user_id)]


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskResponse:
    task, _ = authorize_task(db, task_id, ctx, Capability.TASK_VIEW)
    return TaskResponse.model_validate(task)


@router.patch("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    request: TaskUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskResponse:
    """
    Update a task. Last write wins.

    Security:
    - Assignee, reporter, project Manager or owner
    - A new assignee must be a project member

    Raises:
        HTTPException(400): Invalid input, cleared required field, assignee outside project
        HTTPException(403): Caller may not edit this task
        HTTPException(404): Task or project not found
    """
    task, project = authorize_task(db, task_id, ctx, Capability.TASK_EDIT)

    updates = request.model_dump(exclude_unset=True)
    for field in REQUIRED_TASK_FIELDS:
        if field in updates and updates[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be empty")

    if "assignee_id" in updates:
        _require_assignee_member(project, updates["assignee_id"])

    for field, value in updates.items():
        setattr(task, field, value)

    commit_or_500(db, "update_task")
    if IS_DEV:
        print(f"[TASKS] Updated task_id={task.id}, fields={sorted(updates)}, by={ctx.user_id}")
    return TaskResponse.model_validate(task)


@router.patch("/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    task_id: int,
    request: TaskStatusRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Set the status directly. Any status may follow any other."""
    task, _ = authorize_task(db, task_id, ctx, Capability.TASK_EDIT)
    task.status = request.status
    commit_or_500(db, "update_task_status")

    if IS_DEV:
        print(f"[TASKS] Status task_id={task.id} -> {request.status.value}")
    return TaskResponse.model_validate(task)


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> dict:
    """
    Delete a task and remove it from its project's task list.

    Attachment bytes go first; the task row, its comments and attachment
    records are removed in one commit.

    Security:
    - Project owner or Manager
    """
    task, project = authorize_task(db, task_id, ctx, Capability.TASK_DELETE)

    removed_files = _delete_task_files(task, storage)
    project.tasks.remove(task)
    commit_or_500(db, "delete_task")

    print(f"[TASKS] Deleted task_id={task_id}, project_id={project.id}, files={removed_files}, by={ctx.user_id}")
    return {"message": "Task deleted successfully"}


# ========================================================================
# COMMENTS
# ========================================================================

@router.post("/{task_id}/comments", response_model=TaskResponse, status_code=201)
def add_comment(
    task_id: int,
    request: CommentCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Append a comment authored by the caller. Any project member may comment."""
    task, _ = authorize_task(db, task_id, ctx, Capability.TASK_COMMENT)

    task.comments.append(TaskComment(content=request.content, author_id=ctx.user_id))
    commit_or_500(db, "add_comment")

    if IS_DEV:
        print(f"[TASKS] Comment added task_id={task.id}, author_id={ctx.user_id}")
    return TaskResponse.model_validate(task)


# ========================================================================
# ATTACHMENTS
# ========================================================================

@router.post("/{task_id}/attachments", response_model=AttachmentResponse, status_code=201)
def upload_attachment(
    task_id: int,
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> AttachmentResponse:
    """
    Upload a file to a task (multipart field ``file``).

    Process:
    1. Authorize (project member)
    2. Validate MIME type against the allow-list
    3. Stream into the active backend, enforcing the size cap
    4. Re-check task and membership, then create the record

    If step 4 fails for any reason the stored bytes are deleted before the
    error propagates.

    Raises:
        HTTPException(400): No file, disallowed type or too large
        HTTPException(403): Caller is not a member
        HTTPException(404): Task or project not found
    """
    authorize_task(db, task_id, ctx, Capability.ATTACHMENT_UPLOAD)

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content_type = validate_content_type(file.content_type)

    stored = storage.store(
        file.file,
        file.filename,
        content_type,
        metadata={"task_id": task_id, "uploaded_by": ctx.user_id},
    )

    try:
        # The task may have been deleted or membership revoked while streaming
        db.expire_all()
        task, _ = authorize_task(db, task_id, ctx, Capability.ATTACHMENT_UPLOAD)

        attachment = TaskAttachment(
            filename=stored.filename,
            storage_ref=stored.reference,
            storage_backend=storage.name,
            mimetype=stored.content_type,
            size=stored.size,
            uploaded_by_id=ctx.user_id,
        )
        task.attachments.append(attachment)
        commit_or_500(db, "upload_attachment")
        db.refresh(attachment)
    except Exception:
        storage.delete(stored.reference)
        print(f"[STORAGE] Upload rolled back, removed {stored.reference}")
        raise

    print(f"[TASKS] Attachment added task_id={task_id}, ref={stored.reference}, size={stored.size}")
    return AttachmentResponse.model_validate(attachment)


@router.get("/{task_id}/attachments/{attachment_id}")
def download_attachment(
    task_id: int,
    attachment_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> StreamingResponse:
    """
    Stream an attachment with its original MIME type.

    Raises:
        HTTPException(404): Task, project, attachment or stored bytes missing
        HTTPException(409): Attachment lives in the other storage backend
    """
    task, _ = authorize_task(db, task_id, ctx, Capability.ATTACHMENT_VIEW)
    attachment = next((a for a in task.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise HTTPException(status_code=404, detail="Attachment not found")

    return stream_attachment(attachment, storage)


@router.delete("/{task_id}/attachments/{attachment_id}", response_model=TaskResponse)
def delete_attachment(
    task_id: int,
    attachment_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> TaskResponse:
    """
    Remove an attachment: stored bytes first, then the record.

    Security:
    - Uploader, project Manager or owner
    """
    task, project = authorize_task(db, task_id, ctx, Capability.ATTACHMENT_VIEW)
    attachment = next((a for a in task.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise HTTPException(status_code=404, detail="Attachment not found")

    capability = Capability.ATTACHMENT_DELETE
    enforce(decide(project, ctx.user_id, capability, attachment=attachment), capability=capability, user_id=ctx.user_id)

    if attachment.storage_backend != storage.name:
        raise StorageBackendMismatch(
            f"Attachment stored in '{attachment.storage_backend}' but active storage is '{storage.name}'"
        )

    storage.delete(attachment.storage_ref)
    task.attachments.remove(attachment)
    commit_or_500(db, "delete_attachment")

    print(f"[TASKS] Attachment removed task_id={task.id}, attachment_id={attachment_id}, by={ctx.user_id}")
    return TaskResponse.model_validate(task)
