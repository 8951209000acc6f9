# taskhub/config.py
# Environment-aware configuration for the TaskHub backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_DAYS = int(os.environ.get("ACCESS_TOKEN_DAYS", "7"))

# Password hashing
PASSWORD_HASH_ITERATIONS = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "200000"))

# Database configuration
# Any SQLAlchemy URL; falls back to a local SQLite file for development
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip() or "sqlite:///./taskhub.db"

# HTTP server
PORT = int(os.environ.get("PORT", "5000"))

# CORS origins
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

_extra_origins = os.environ.get("CORS_ORIGINS", "")
if _extra_origins:
    CORS_ORIGINS.extend(o.strip() for o in _extra_origins.split(",") if o.strip())

# Attachment storage: "disk" writes under UPLOAD_DIR, "database" keeps the
# bytes in the stored_files/stored_file_chunks tables
ATTACHMENT_STORAGE: Literal["disk", "database"] = os.environ.get("ATTACHMENT_STORAGE", "disk")  # type: ignore
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/zip",
    "application/x-zip-compressed",
}

_extra_mime = os.environ.get("ALLOWED_MIME_TYPES", "")
if _extra_mime:
    ALLOWED_MIME_TYPES.update(m.strip() for m in _extra_mime.split(",") if m.strip())

if ATTACHMENT_STORAGE not in ("disk", "database"):
    raise ValueError(f"Invalid ATTACHMENT_STORAGE: {ATTACHMENT_STORAGE!r} (expected 'disk' or 'database')")

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: {'SQLite' if DATABASE_URL.startswith('sqlite') else DATABASE_URL.split('://')[0]}")
print(f"[CONFIG] Attachment storage: {ATTACHMENT_STORAGE} (max {MAX_UPLOAD_BYTES // (1024 * 1024)}MB)")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_DAYS} days")
