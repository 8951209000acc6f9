"""
taskhub/routes_users.py

Registration, login, profile and user administration endpoints.

Security guarantees:
- register/login are public; everything else requires require_auth_context
- Password hashes never leave the backend (response schemas omit them)
- Nobody can self-assign the Admin role; only the first registered user
  starts as Admin, later Admins are granted by an existing Admin
- Admin routes use require_admin
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from taskhub.auth_context import AuthContext, require_admin, require_auth_context
from taskhub.config import IS_DEV
from taskhub.db import get_db
from taskhub.dependencies import authorize_project, commit_or_500, projects_for_user
from taskhub.models import (
    Project,
    ProjectMember,
    Task,
    TaskAttachment,
    TaskComment,
    User,
    UserRole,
)
from taskhub.rbac import Capability, is_member
from taskhub.reports import compute_task_stats
from taskhub.schemas import (
    AuthResponse,
    LoginRequest,
    ProfileUpdateRequest,
    ProjectBrief,
    RegisterRequest,
    RoleUpdateRequest,
    TaskStats,
    UserProfileResponse,
    UserResponse,
    UserStatsResponse,
    UserSummary,
)
from taskhub.security import create_access_token, hash_password, verify_password

router = APIRouter(
    prefix="/api/users",
    tags=["users"],
)


def _email_taken(db: Session, email: str, exclude_user_id: Optional[int] = None) -> bool:
    query = db.query(User.id).filter(User.email == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    return db.query(query.exists()).scalar()


# ========================================================================
# PUBLIC
# ========================================================================

@router.post("/register", response_model=AuthResponse, status_code=201)
def register(request: RegisterRequest, db: Session = Depends(get_db)) -> AuthResponse:
    """
    Create an account and return it with a fresh access token.

    Role assignment:
    - The very first user of a deployment becomes Admin
    - Later users get the requested role (Member or Manager), default Member
    - Requesting Admin after bootstrap is refused

    Raises:
        HTTPException(400): Email already registered
        HTTPException(403): Admin role requested
    """
    if _email_taken(db, request.email):
        if IS_DEV:
            print(f"[AUTH] Registration rejected, email exists: {request.email}")
        raise HTTPException(status_code=400, detail="User already exists")

    is_first_user = db.query(func.count(User.id)).scalar() == 0
    if is_first_user:
        role = UserRole.admin
    elif request.role == UserRole.admin:
        raise HTTPException(status_code=403, detail="Admin role cannot be self-assigned")
    else:
        role = request.role or UserRole.member

    user = User(
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        role=role,
    )
    db.add(user)
    commit_or_500(db, "register")

    print(f"[AUTH] Registered user_id={user.id}, role={role.value}")
    return AuthResponse(user=UserResponse.model_validate(user), token=create_access_token(user.id))


@router.post("/login", response_model=AuthResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)) -> AuthResponse:
    """
    Exchange email + password for an access token.

    Unknown email and wrong password give the same 401 so accounts cannot be probed.
    """
    user = db.query(User).filter(User.email == request.email).first()
    if user is None or not verify_password(request.password, user.password_hash):
        if IS_DEV:
            print(f"[AUTH] Login failed for {request.email}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if IS_DEV:
        print(f"[AUTH] Login user_id={user.id}")
    return AuthResponse(user=UserResponse.model_validate(user), token=create_access_token(user.id))


# ========================================================================
# SELF
# ========================================================================

@router.get("/profile", response_model=UserProfileResponse)
def get_profile(
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> UserProfileResponse:
    """Current user plus the projects they own or belong to."""
    user = db.get(User, ctx.user_id)
    return UserProfileResponse(
        **UserResponse.model_validate(user).model_dump(),
        projects=[ProjectBrief.model_validate(p) for p in projects_for_user(db, ctx.user_id)],
    )


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: ProfileUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> UserResponse:
    """
    Update name, email and/or password of the caller.

    Any other field (role, id) is a validation error.

    Raises:
        HTTPException(400): Email used by another account
    """
    user = db.get(User, ctx.user_id)
    updates = request.model_dump(exclude_unset=True, exclude_none=True)

    if "email" in updates and _email_taken(db, updates["email"], exclude_user_id=user.id):
        raise HTTPException(status_code=400, detail="Email already in use")

    if "password" in updates:
        user.password_hash = hash_password(updates.pop("password"))
    for field, value in updates.items():
        setattr(user, field, value)

    commit_or_500(db, "update_profile")
    if IS_DEV:
        print(f"[AUTH] Profile updated user_id={user.id}, fields={sorted(request.model_fields_set)}")
    return UserResponse.model_validate(user)


@router.get("/available", response_model=List[UserSummary])
def list_available_users(
    project_id: Optional[int] = Query(None, ge=1, description="Exclude users already in this project"),
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> List[UserSummary]:
    """
    Users that can be added as project members.

    Without project_id: every user except the caller.
    With project_id (caller must be a member): users not yet in that project.
    """
    excluded = {ctx.user_id}
    if project_id is not None:
        project = authorize_project(db, project_id, ctx, Capability.PROJECT_VIEW)
        excluded.add(project.owner_id)
        excluded.update(m.user_id for m in project.members)

    users = db.query(User).filter(User.id.notin_(excluded)).order_by(User.name, User.id).all()
    return [UserSummary.model_validate(u) for u in users]


@router.get("/stats", response_model=UserStatsResponse)
def get_user_stats(
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
) -> UserStatsResponse:
    """Project counts and statistics over the tasks assigned to the caller."""
    projects = projects_for_user(db, ctx.user_id)
    owned = sum(1 for p in projects if p.owner_id == ctx.user_id)
    assigned = [
        t for t in db.query(Task).filter(Task.assignee_id == ctx.user_id).all()
        if is_member(t.project, ctx.user_id)
    ]

    return UserStatsResponse(
        owned_projects=owned,
        member_projects=len(projects) - owned,
        assigned=TaskStats(**compute_task_stats(assigned)),
    )


# ========================================================================
# ADMIN
# ========================================================================

@router.get("/users", response_model=List[UserResponse])
def list_users(
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[UserResponse]:
    users = db.query(User).order_by(User.id).all()
    return [UserResponse.model_validate(u) for u in users]


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: int,
    request: RoleUpdateRequest,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> UserResponse:
    """
    Change a user's global role.

    Raises:
        HTTPException(400): Admin tries to change their own role
        HTTPException(404): User not found
    """
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if user.id == ctx.user_id:
        raise HTTPException(status_code=400, detail="Cannot change your own role")

    user.role = request.role
    commit_or_500(db, "update_user_role")
    print(f"[AUTHZ] Role changed: user_id={user.id}, role={request.role.value}, by={ctx.user_id}")
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    ctx: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    """
    Delete a user account.

    The user's memberships are removed and their references on tasks,
    comments and attachments are cleared in the same transaction.

    Raises:
        HTTPException(400): Admin tries to delete themselves
        HTTPException(404): User not found
        HTTPException(409): User still owns projects
    """
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if user.id == ctx.user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    owned = db.query(func.count(Project.id)).filter(Project.owner_id == user.id).scalar()
    if owned:
        raise HTTPException(
            status_code=409,
            detail=f"User owns {owned} project(s); delete or reassign them first",
        )

    db.query(ProjectMember).filter(ProjectMember.user_id == user.id).delete(synchronize_session=False)
    db.query(Task).filter(Task.assignee_id == user.id).update({Task.assignee_id: None}, synchronize_session=False)
    db.query(Task).filter(Task.reporter_id == user.id).update({Task.reporter_id: None}, synchronize_session=False)
    db.query(TaskComment).filter(TaskComment.author_id == user.id).update(
        {TaskComment.author_id: None}, synchronize_session=False
    )
    db.query(TaskAttachment).filter(TaskAttachment.uploaded_by_id == user.id).update(
        {TaskAttachment.uploaded_by_id: None}, synchronize_session=False
    )
    db.delete(user)
    commit_or_500(db, "delete_user")

    print(f"[AUTHZ] User deleted: user_id={user_id}, by={ctx.user_id}")
    return {"message": "User deleted successfully"}
