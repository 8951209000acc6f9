"""
taskhub/models.py

SQLAlchemy models for users, projects, tasks and stored attachment payloads.

Member entries, comments and attachments are child rows owned by their parent
(delete-orphan cascade). A project's task list is the set of tasks whose
project_id points at it, kept in insertion order by Task.position.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the form every column stores)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums
class UserRole(str, Enum):
    admin = "Admin"
    manager = "Manager"
    member = "Member"


class ProjectRole(str, Enum):
    manager = "Manager"
    member = "Member"


class ProjectStatus(str, Enum):
    active = "Active"
    completed = "Completed"
    on_hold = "On Hold"


class TaskStatus(str, Enum):
    todo = "To-Do"
    in_progress = "In Progress"
    completed = "Completed"


class TaskPriority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


def _enum_column(enum_cls, **kwargs) -> Column:
    # Store the human-readable value ("In Progress"), not the member name
    return Column(
        SAEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        **kwargs,
    )


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = _enum_column(UserRole, nullable=False, default=UserRole.member)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = _enum_column(ProjectStatus, nullable=False, default=ProjectStatus.active)
    start_date = Column(DateTime, nullable=False, default=utc_now)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectMember.id",
    )
    tasks = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="[Task.position, Task.id]",
    )

    @property
    def task_ids(self) -> list[int]:
        return [t.id for t in self.tasks]

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name}, owner_id={self.owner_id})>"


class ProjectMember(Base):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = _enum_column(ProjectRole, nullable=False, default=ProjectRole.member)

    project = relationship("Project", back_populates="members")
    user = relationship("User")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    assignee_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    reporter_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = _enum_column(TaskStatus, nullable=False, default=TaskStatus.todo)
    priority = _enum_column(TaskPriority, nullable=False, default=TaskPriority.medium)
    due_date = Column(DateTime, nullable=False, index=True)
    tags = Column(JSON, nullable=False, default=list)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assignee_id])
    reporter = relationship("User", foreign_keys=[reporter_id])
    comments = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskComment.id",
    )
    attachments = relationship(
        "TaskAttachment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskAttachment.id",
    )

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """Past due and not Completed. Derived on every read, never stored."""
        now = now or utc_now()
        return self.due_date < now and self.status != TaskStatus.completed

    @property
    def overdue(self) -> bool:
        return self.is_overdue()

    @property
    def completion_percentage(self) -> int:
        if self.status == TaskStatus.completed:
            return 100
        if self.status == TaskStatus.in_progress:
            return 50
        return 0

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title={self.title}, status={self.status})>"


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    task = relationship("Task", back_populates="comments")
    author = relationship("User")


class TaskAttachment(Base):
    __tablename__ = "task_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    storage_ref = Column(String(255), nullable=False, unique=True, index=True)
    storage_backend = Column(String(16), nullable=False)
    mimetype = Column(String(255), nullable=False)
    size = Column(Integer, nullable=False)
    uploaded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=utc_now)

    task = relationship("Task", back_populates="attachments")
    uploaded_by = relationship("User")


# ---------------------------------------------------------
# Database-backed content store (files + fixed-size chunks)
# ---------------------------------------------------------
class StoredFile(Base):
    __tablename__ = "stored_files"

    id = Column(String(32), primary_key=True)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=False)
    length = Column(Integer, nullable=False, default=0)
    chunk_size = Column(Integer, nullable=False)
    upload_date = Column(DateTime, nullable=False, default=utc_now)
    file_metadata = Column("metadata", JSON, nullable=False, default=dict)

    chunks = relationship(
        "StoredFileChunk",
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="StoredFileChunk.n",
    )


class StoredFileChunk(Base):
    __tablename__ = "stored_file_chunks"
    __table_args__ = (UniqueConstraint("file_id", "n", name="uq_stored_file_chunk"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(32), ForeignKey("stored_files.id", ondelete="CASCADE"), nullable=False, index=True)
    n = Column(Integer, nullable=False)
    data = Column(LargeBinary, nullable=False)

    file = relationship("StoredFile", back_populates="chunks")
