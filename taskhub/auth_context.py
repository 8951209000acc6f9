"""
taskhub/auth_context.py

Shared authentication context for FastAPI dependency injection.

Contains:
- AuthContext: identity of the caller, loaded from the database on every request
- require_auth_context: FastAPI dependency for bearer-token auth
- require_admin: dependency restricting a route to global Admin users

Never trust user ids from request bodies or query params for the caller's identity.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.orm import Session

from taskhub.config import IS_DEV
from taskhub.db import get_db
from taskhub.models import User, UserRole
from taskhub.security import verify_token

# auto_error=False so a missing header is reported as 401, not 403
security = HTTPBearer(auto_error=False)


class AuthContext(BaseModel):
    """
    Identity derived from a verified JWT plus the current user row.

    Fields:
        user_id: User ID from the token subject
        email: Current email from the users table
        name: Display name
        role: Global role (Admin/Manager/Member)
    """
    user_id: int
    email: str
    name: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def require_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> AuthContext:
    """
    Auth dependency for all protected routes.

    Process:
    1. Require an ``Authorization: Bearer`` header
    2. Verify JWT signature and expiry
    3. Load the user row (backend is source of truth; deleted users lose access)

    Raises:
        HTTPException(401): Missing/invalid/expired token or unknown user
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Authentication required")

    payload = verify_token(credentials.credentials)
    subject = payload.get("sub")

    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        print("[AUTH] Missing or malformed subject in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = db.get(User, user_id)
    if user is None:
        print(f"[AUTH] User not found: user_id={user_id}")
        raise HTTPException(status_code=401, detail="User not found")

    ctx = AuthContext(user_id=user.id, email=user.email, name=user.name, role=user.role)

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, role={ctx.role.value}")

    return ctx


def require_admin(ctx: AuthContext = Depends(require_auth_context)) -> AuthContext:
    """Restrict a route to users with the global Admin role."""
    if not ctx.is_admin:
        print(f"[AUTHZ] Admin required: user_id={ctx.user_id}, role={ctx.role.value}")
        raise HTTPException(status_code=403, detail="Admin role required")
    return ctx
