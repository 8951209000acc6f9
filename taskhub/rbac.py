"""
taskhub/rbac.py

Project-level Role-Based Access Control.

Single source of truth for who may read or mutate a project, its tasks and
their attachments. Every project- and task-scoped route goes through decide().

Role model:
- The project owner is implicitly a Manager, whatever the member list says.
- Members are listed with role Manager or Member.
- Anyone else has no access to the project.

Pure Python logic - no FastAPI imports, no database access.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from taskhub.models import ProjectRole


class Decision(str, Enum):
    """Outcome of a policy check."""
    ALLOW = "allow"
    DENY_NOT_FOUND = "deny_not_found"
    DENY_FORBIDDEN = "deny_forbidden"


class Capability(str, Enum):
    """Operations guarded by the project policy."""

    # Project capabilities
    PROJECT_VIEW = "project:view"
    PROJECT_MANAGE = "project:manage"
    PROJECT_DELETE = "project:delete"

    # Task capabilities
    TASK_CREATE = "task:create"
    TASK_VIEW = "task:view"
    TASK_EDIT = "task:edit"
    TASK_DELETE = "task:delete"
    TASK_COMMENT = "task:comment"

    # Attachment capabilities
    ATTACHMENT_UPLOAD = "attachment:upload"
    ATTACHMENT_VIEW = "attachment:view"
    ATTACHMENT_DELETE = "attachment:delete"


# Capabilities that only need plain membership
MEMBER_CAPABILITIES = {
    Capability.PROJECT_VIEW,
    Capability.TASK_CREATE,
    Capability.TASK_VIEW,
    Capability.TASK_COMMENT,
    Capability.ATTACHMENT_UPLOAD,
    Capability.ATTACHMENT_VIEW,
}

# Capabilities reserved for the owner and Manager members
MANAGER_CAPABILITIES = {
    Capability.PROJECT_MANAGE,
    Capability.TASK_DELETE,
}


# ============================================================================
# Membership predicates
# ============================================================================

def _same_user(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def is_owner(project: Any, user_id: Any) -> bool:
    return _same_user(project.owner_id, user_id)


def member_role(project: Any, user_id: Any) -> Optional[ProjectRole]:
    """
    Effective role of ``user_id`` in ``project``.

    Returns:
        ProjectRole.manager for the owner, the listed role for members,
        None for non-members.
    """
    if is_owner(project, user_id):
        return ProjectRole.manager
    for member in project.members:
        if _same_user(member.user_id, user_id):
            return ProjectRole(member.role)
    return None


def is_member(project: Any, user_id: Any) -> bool:
    """True iff user is the owner or appears in project.members."""
    return member_role(project, user_id) is not None


def is_manager(project: Any, user_id: Any) -> bool:
    """True iff user is the owner or a member with role Manager."""
    return member_role(project, user_id) == ProjectRole.manager


# ============================================================================
# Policy
# ============================================================================

def decide(
    project: Any,
    user_id: Any,
    capability: Capability,
    *,
    task: Any = None,
    attachment: Any = None,
) -> Decision:
    """
    Decide whether ``user_id`` may perform ``capability``.

    Args:
        project: The project (None when the lookup failed)
        user_id: Caller's user id
        capability: Requested operation
        task: Target task for task:edit (assignee/reporter rule)
        attachment: Target attachment for attachment:delete (uploader rule)

    Returns:
        DENY_NOT_FOUND if the project is missing, DENY_FORBIDDEN if the
        caller lacks the right, ALLOW otherwise.

    Rules:
        - project:delete is owner-only
        - project:manage and task:delete need Manager (owner included)
        - task:edit: task assignee, task reporter, or Manager
        - attachment:delete: uploader or Manager
        - everything else needs membership
    """
    if project is None:
        return Decision.DENY_NOT_FOUND

    role = member_role(project, user_id)
    if role is None:
        return Decision.DENY_FORBIDDEN

    if capability == Capability.PROJECT_DELETE:
        allowed = is_owner(project, user_id)
    elif capability in MANAGER_CAPABILITIES:
        allowed = role == ProjectRole.manager
    elif capability == Capability.TASK_EDIT:
        allowed = (
            role == ProjectRole.manager
            or (task is not None and (_same_user(task.assignee_id, user_id) or _same_user(task.reporter_id, user_id)))
        )
    elif capability == Capability.ATTACHMENT_DELETE:
        allowed = (
            role == ProjectRole.manager
            or (attachment is not None and _same_user(attachment.uploaded_by_id, user_id))
        )
    else:
        allowed = capability in MEMBER_CAPABILITIES

    return Decision.ALLOW if allowed else Decision.DENY_FORBIDDEN
