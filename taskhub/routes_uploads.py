"""
taskhub/routes_uploads.py

Attachment download by stored reference.

Security guarantees:
- Requires authentication
- The reference must belong to a recorded attachment; the attachment's task
  and project are resolved and membership is checked before any bytes move
- The file path (disk backend) is rebuilt from the stored reference only
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from taskhub.auth_context import AuthContext, require_auth_context
from taskhub.db import get_db
from taskhub.dependencies import authorize_task, get_storage, stream_attachment
from taskhub.models import TaskAttachment
from taskhub.rbac import Capability
from taskhub.storage import AttachmentStorage

router = APIRouter(
    prefix="/api/uploads",
    tags=["uploads"],
)


@router.get("/{reference}")
def download_upload(
    reference: str,
    ctx: AuthContext = Depends(require_auth_context),
    db: Session = Depends(get_db),
    storage: AttachmentStorage = Depends(get_storage),
) -> StreamingResponse:
    """
    Stream the attachment stored under ``reference``.

    Raises:
        HTTPException(403): Caller is not a member of the attachment's project
        HTTPException(404): Unknown reference, task or project
        HTTPException(409): Attachment lives in the other storage backend
    """
    attachment = db.query(TaskAttachment).filter(TaskAttachment.storage_ref == reference).first()
    if attachment is None:
        print(f"[STORAGE] Unknown reference requested: {reference!r}, user_id={ctx.user_id}")
        raise HTTPException(status_code=404, detail="File not found")

    authorize_task(db, attachment.task_id, ctx, Capability.ATTACHMENT_VIEW)
    return stream_attachment(attachment, storage)
