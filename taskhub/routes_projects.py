"""
taskhub/routes_projects.py

Project CRUD, membership, statistics and PDF report endpoints.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- Every project-scoped route loads the project and applies the project policy
  (taskhub.rbac.decide) before reading or mutating anything
- owner_id comes from the auth context only and is never updatable
- The owner can never be removed from the member list
"""

from __future__ import annotations

from io import BytesIO
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from taskhub.auth_context import AuthContext, require_auth_context
from taskhub.config import IS_DEV
from taskhub.db import get_db
from taskhub.dependencies import authorize_project, commit_or_500, get_storage, projects_for_user
from taskhub.models import Project, ProjectMember, ProjectRole, User
from taskhub.rbac import Capability, is_member
from taskhub.reports import compute_task_stats, render_project_report
from taskhub.schemas import (
    MemberAddRequest,
    ProjectCreateRequest,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectStats,
    ProjectUpdateRequest,
)
from taskhub.storage import AttachmentStorage

router = APIRouter(
    prefix="/api/projects",
    tags=["projects"],
)


def _require_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return user


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    request: ProjectCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    """
    Create a project owned by the caller.

    The owner is recorded as the first member with role Manager. Additional
    members are de-duplicated by user; entries naming the owner are ignored.

    Raises:
        HTTPException(400): Invalid input
        HTTPException(404): A listed member does not exist
    """
    project = Project(
        name=request.name,
        description=request.description,
        owner_id=ctx.user_id,
        status=request.status,
        end_date=request.end_date,
    )
    if request.start_date is not None:
        project.start_date = request.start_date

    project.members.append(ProjectMember(user_id=ctx.user_id, role=ProjectRole.manager))
    seen = {ctx.user_id}
    for entry in request.members:
        if entry.user_id in seen:
            continue
        _require_user(db, entry.user_id)
        project.members.append(ProjectMember(user_id=entry.user_id, role=entry.role))
        seen.add(entry.user_id)

    db.add(project)
    commit_or_500(db, "create_project")
    db.refresh(project)

    print(f"[PROJECTS] Created project_id={project.id}, owner_id={ctx.user_id}, members={len(project.members)}")
    return ProjectResponse.model_validate(project)


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> List[ProjectResponse]:
    """Projects where the caller is owner or member, newest first."""
    projects = projects_for_user(db, ctx.user_id)
    if IS_DEV:
        print(f"[PROJECTS] Listed {len(projects)} projects for user_id={ctx.user_id}")
    return [ProjectResponse.model_validate(p) for p in projects]


@router.get("/{project_id}", response_model=ProjectDetailResponse)
def get_project(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectDetailResponse:
    """
    Get a project with its members and tasks.

    Raises:
        HTTPException(403): Caller is not a member
        HTTPException(404): Project not found
    """
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_VIEW)
    return ProjectDetailResponse.model_validate(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: int,
    request: ProjectUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    """
    Update name, description, status or end_date.

    Security:
    - Requires owner or Manager member
    - Unknown fields (owner_id, members, tasks) are rejected by the schema
    """
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_MANAGE)

    updates = request.model_dump(exclude_unset=True)
    if "name" in updates and updates["name"] is None:
        raise HTTPException(status_code=400, detail="Project name cannot be empty")
    if "status" in updates and updates["status"] is None:
        raise HTTPException(status_code=400, detail="Project status cannot be empty")

    for field, value in updates.items():
        setattr(project, field, value)

    commit_or_500(db, "update_project")
    if IS_DEV:
        print(f"[PROJECTS] Updated project_id={project.id}, fields={sorted(updates)}")
    return ProjectResponse.model_validate(project)


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> dict:
    """
    Delete a project, all its tasks and their attachments.

    Order: stored attachment bytes first, then the project row together with
    its tasks, comments, attachment records and member entries in one commit.

    Security:
    - Owner only (Managers get 403)
    """
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_DELETE)

    removed_files = 0
    for task in project.tasks:
        for attachment in task.attachments:
            if attachment.storage_backend != storage.name:
                print(
                    f"[STORAGE] Skipping {attachment.storage_ref}: written by "
                    f"{attachment.storage_backend}, active backend is {storage.name}"
                )
                continue
            if storage.delete(attachment.storage_ref):
                removed_files += 1

    task_count = len(project.tasks)
    db.delete(project)
    commit_or_500(db, "delete_project")

    print(
        f"[PROJECTS] Deleted project_id={project_id}, tasks={task_count}, "
        f"files={removed_files}, by={ctx.user_id}"
    )
    return {"message": "Project deleted successfully"}


# ========================================================================
# MEMBERS
# ========================================================================

@router.post("/{project_id}/members", response_model=ProjectResponse)
def add_member(
    project_id: int,
    request: MemberAddRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    """
    Add a user to the project.

    Raises:
        HTTPException(400): User is already a member (or the owner)
        HTTPException(403): Caller is not owner/Manager
        HTTPException(404): Project or user not found
    """
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_MANAGE)
    _require_user(db, request.user_id)

    if is_member(project, request.user_id):
        raise HTTPException(status_code=400, detail="User is already a member")

    project.members.append(ProjectMember(user_id=request.user_id, role=request.role))
    commit_or_500(db, "add_member")

    print(f"[PROJECTS] Member added: project_id={project.id}, user_id={request.user_id}, role={request.role.value}")
    return ProjectResponse.model_validate(project)


@router.delete("/{project_id}/members/{user_id}", response_model=ProjectResponse)
def remove_member(
    project_id: int,
    user_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectResponse:
    """
    Remove a member from the project.

    Raises:
        HTTPException(400): Target is the project owner
        HTTPException(403): Caller is not owner/Manager
        HTTPException(404): Project not found or user is not a member
    """
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_MANAGE)

    if project.owner_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot remove project owner")

    entry = next((m for m in project.members if m.user_id == user_id), None)
    if entry is None:
        raise HTTPException(status_code=404, detail="Member not found")

    project.members.remove(entry)
    commit_or_500(db, "remove_member")

    print(f"[PROJECTS] Member removed: project_id={project.id}, user_id={user_id}, by={ctx.user_id}")
    return ProjectResponse.model_validate(project)


# ========================================================================
# STATS & REPORTS
# ========================================================================

@router.get("/{project_id}/stats", response_model=ProjectStats)
def get_project_stats(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> ProjectStats:
    """Status/priority/overdue counts over the project's tasks."""
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_VIEW)
    return ProjectStats(**compute_task_stats(project.tasks))


def _report_response(db: Session, project_id: int, ctx: AuthContext) -> StreamingResponse:
    project = authorize_project(db, project_id, ctx, Capability.PROJECT_VIEW)
    pdf = render_project_report(project)

    print(f"[REPORT] Generated report for project_id={project.id} ({len(pdf)} bytes), user_id={ctx.user_id}")
    return StreamingResponse(
        BytesIO(pdf),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="project-{project.id}-report.pdf"',
            "Content-Length": str(len(pdf)),
        },
    )


@router.get("/{project_id}/report")
def get_project_report(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    """
    Download a PDF summary of the project.

    Pure read: nothing is persisted. Any member may generate it.
    """
    return _report_response(db, project_id, ctx)


@router.post("/{project_id}/report")
def generate_project_report(
    project_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    return _report_response(db, project_id, ctx)
