"""
taskhub/schemas.py

Pydantic request/response schemas for users, projects and tasks.

Update schemas forbid unknown fields, so a PATCH that tries to touch an
immutable attribute (owner, project, reporter) is a 400 validation error.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskhub.models import ProjectRole, ProjectStatus, TaskPriority, TaskStatus, UserRole

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _strip(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    """Store every datetime as naive UTC."""
    if v is not None and v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


# ========================================================================
# USERS
# ========================================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120, description="Display name")
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN, description="Login email")
    password: str = Field(..., min_length=6, max_length=128, description="At least 6 characters")
    role: Optional[UserRole] = Field(None, description="Requested role (Member or Manager)")

    strip_name = field_validator("name", mode="before")(_strip)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    email: Optional[str] = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(None, min_length=6, max_length=128)

    strip_name = field_validator("name", mode="before")(_strip)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class RoleUpdateRequest(BaseModel):
    role: UserRole


class UserSummary(BaseModel):
    """Public view of a user embedded in other responses. Never includes the password hash."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class UserResponse(UserSummary):
    role: UserRole
    created_at: datetime


class ProjectBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    status: ProjectStatus


class UserProfileResponse(UserResponse):
    projects: List[ProjectBrief] = Field(default_factory=list)


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


class TaskStats(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    high_priority_tasks: int = 0
    medium_priority_tasks: int = 0
    low_priority_tasks: int = 0
    overdue_tasks: int = 0
    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0


class UserStatsResponse(BaseModel):
    owned_projects: int
    member_projects: int
    assigned: TaskStats


# ========================================================================
# PROJECTS
# ========================================================================

class MemberInput(BaseModel):
    user_id: int = Field(..., ge=1)
    role: ProjectRole = ProjectRole.member


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Project name (required)")
    description: Optional[str] = Field(None, max_length=5000)
    members: List[MemberInput] = Field(default_factory=list)
    status: ProjectStatus = ProjectStatus.active
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    strip_text = field_validator("name", "description", mode="before")(_strip)
    utc_dates = field_validator("start_date", "end_date")(_naive_utc)


class ProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    status: Optional[ProjectStatus] = None
    end_date: Optional[datetime] = None

    strip_text = field_validator("name", "description", mode="before")(_strip)
    utc_dates = field_validator("end_date")(_naive_utc)


class MemberAddRequest(MemberInput):
    pass


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user: UserSummary
    role: ProjectRole


class TaskBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime
    assignee_id: Optional[int] = None
    overdue: bool


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    owner: UserSummary
    members: List[MemberResponse]
    task_ids: List[int]
    status: ProjectStatus
    start_date: datetime
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ProjectDetailResponse(ProjectResponse):
    tasks: List[TaskBrief]


class ProjectStats(TaskStats):
    """Task statistics scoped to one project."""


# ========================================================================
# TASKS
# ========================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300, description="Task title (required)")
    description: Optional[str] = Field(None, max_length=10000)
    project_id: int = Field(..., ge=1)
    assignee_id: int = Field(..., ge=1)
    due_date: datetime
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    tags: List[str] = Field(default_factory=list, max_length=50)
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)

    strip_text = field_validator("title", "description", mode="before")(_strip)
    utc_dates = field_validator("due_date")(_naive_utc)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: List[str]) -> List[str]:
        return [t.strip() for t in v if t and t.strip()]


class TaskUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = Field(None, max_length=10000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = Field(None, max_length=50)
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)

    strip_text = field_validator("title", "description", mode="before")(_strip)
    utc_dates = field_validator("due_date")(_naive_utc)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return [t.strip() for t in v if t and t.strip()]


class TaskStatusRequest(BaseModel):
    status: TaskStatus


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

    strip_content = field_validator("content", mode="before")(_strip)


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    content: str
    author: Optional[UserSummary] = None
    created_at: datetime


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    storage_ref: str
    storage_backend: str
    mimetype: str
    size: int
    uploaded_by: Optional[UserSummary] = None
    uploaded_at: datetime


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    assignee: Optional[UserSummary] = None
    reporter: Optional[UserSummary] = None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime
    tags: List[str]
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    overdue: bool
    completion_percentage: int
    comments: List[CommentResponse]
    attachments: List[AttachmentResponse]
    created_at: datetime
    updated_at: datetime
