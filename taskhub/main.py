# ---------------------------------------------------------
# taskhub/main.py
# TaskHub - Project & Task Tracker Backend
#
# Run: uvicorn taskhub.main:app --reload (from repo root)
#
# - FastAPI + SQLAlchemy (SQLite by default, any SQLAlchemy URL)
# - /api/users    : register, login, profile, admin user management
# - /api/projects : projects, members, stats, PDF reports
# - /api/tasks    : tasks, status, comments, attachments, stats
# - /api/uploads  : attachment download by stored reference
# ---------------------------------------------------------

from __future__ import annotations

import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskhub import routes_projects, routes_tasks, routes_uploads, routes_users
from taskhub.config import (
    ATTACHMENT_STORAGE,
    CORS_ORIGINS,
    ENV,
    IS_DEV,
    IS_PROD,
    MAX_UPLOAD_BYTES,
    PORT,
    UPLOAD_DIR,
)
from taskhub.db import SessionLocal, check_db_connection, engine, init_db
from taskhub.storage import (
    StorageBackendMismatch,
    StoredObjectNotFound,
    UploadRejected,
    build_storage,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the attachment storage on startup; release them on shutdown."""
    init_db()
    app.state.storage = build_storage(
        ATTACHMENT_STORAGE,
        upload_dir=UPLOAD_DIR,
        session_factory=SessionLocal,
        max_bytes=MAX_UPLOAD_BYTES,
    )
    print(f"[STORAGE] Active backend: {app.state.storage.name}")

    yield

    app.state.storage.close()
    engine.dispose()
    print("[DB] Engine disposed")


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="TaskHub Backend", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------
# Error handlers
# ---------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing fields -> 400 with one entry per field."""
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    if IS_DEV:
        print(f"[API] Validation failed on {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(UploadRejected)
async def upload_rejected_handler(request: Request, exc: UploadRejected) -> JSONResponse:
    print(f"[STORAGE] Upload rejected: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoredObjectNotFound)
async def stored_object_not_found_handler(request: Request, exc: StoredObjectNotFound) -> JSONResponse:
    print(f"[STORAGE] {exc}")
    return JSONResponse(status_code=404, content={"detail": "File not found"})


@app.exception_handler(StorageBackendMismatch)
async def backend_mismatch_handler(request: Request, exc: StorageBackendMismatch) -> JSONResponse:
    print(f"[STORAGE] {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected -> 500. The stack trace is only exposed in dev."""
    print(f"[API] Unhandled error on {request.method} {request.url.path}: {exc!r}")
    content: Dict[str, Any] = {"detail": "Internal server error"}
    if IS_DEV:
        content["trace"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=500, content=content)


# ============================================================================
# API ENDPOINT CLASSIFICATION & SECURITY MODEL
# ============================================================================
#
# [PUBLIC] - No authentication required
#   • /health - Health check
#   • /api/users/register - User registration
#   • /api/users/login - User login
#
# [AUTH_ONLY] - Requires authentication, not project-scoped
#   • /api/users/profile - Read/update own profile
#   • /api/users/available - Users that can be added as members
#   • /api/users/stats - Own project counts and assigned-task stats
#   • /api/projects (GET, POST) - Own projects / create project
#   • /api/tasks/user - Tasks assigned to the caller
#
# [ADMIN] - Requires global role Admin
#   • /api/users/users - List users
#   • /api/users/users/{id}/role - Change role
#   • /api/users/users/{id} (DELETE) - Delete user
#
# [PROJECT_SCOPED] - Requires authentication AND project membership
#   The project is resolved (tasks via task.project_id) and the policy in
#   taskhub.rbac decides: 404 if the project/task is missing, 403 if the
#   caller lacks the right. No partial results.
#
#   Member:  view project/tasks/stats/report, create task, comment,
#            upload and download attachments
#   Editor (assignee, reporter or Manager): update task, change status
#   Manager (incl. owner): update project, add/remove members, delete task,
#            delete any attachment
#   Owner:   delete project
#
# ENFORCEMENT RULES:
# 1. Identity comes from AuthContext (require_auth_context), never from bodies
# 2. owner_id, project_id and reporter_id are never client-updatable
# 3. The owner can never be removed from a project
# 4. Attachment bytes are deleted before their records; an upload whose
#    record cannot be written is deleted before the error is returned
#
# ============================================================================

@app.get("/health")
def health() -> Dict[str, Any]:
    db_ok = check_db_connection()
    return {
        "status": "ok" if db_ok else "degraded",
        "database": "connected" if db_ok else "unavailable",
        "environment": ENV,
    }


app.include_router(routes_users.router)
app.include_router(routes_projects.router)
app.include_router(routes_tasks.router)
app.include_router(routes_uploads.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("taskhub.main:app", host="0.0.0.0", port=PORT, reload=IS_DEV)
