#!/usr/bin/env python3
"""
Backfill attachments from one storage backend into the other.

Run once after switching ATTACHMENT_STORAGE, e.g.:
    python -m taskhub.migrate_attachments --to database
    python -m taskhub.migrate_attachments --to disk --dry-run

For every attachment recorded in the source backend:
1. Copy its bytes into the target backend
2. Point the record at the new reference/backend (commit)
3. Delete the source bytes

A record is only switched after the copy succeeded, and the source bytes are
only removed after the record was switched.
"""

from __future__ import annotations

import argparse
import sys
from io import BytesIO
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from taskhub.config import UPLOAD_DIR
from taskhub.db import SessionLocal, init_db
from taskhub.models import TaskAttachment
from taskhub.storage import DatabaseStorage, DiskStorage, StoredObjectNotFound, build_storage

BACKENDS = (DiskStorage.name, DatabaseStorage.name)


def migrate(
    target: str,
    *,
    session_factory: sessionmaker = SessionLocal,
    upload_dir: Optional[str] = None,
    dry_run: bool = False,
) -> Dict[str, int]:
    """
    Move every attachment not yet in ``target`` into it.

    Returns:
        Counts: migrated, missing (source bytes gone), failed, skipped (dry run)
    """
    if target not in BACKENDS:
        raise ValueError(f"Unknown target backend: {target!r}")
    source = DiskStorage.name if target == DatabaseStorage.name else DatabaseStorage.name

    # Existing attachments were accepted under earlier limits; do not re-apply the cap
    storages = {
        name: build_storage(
            name,
            upload_dir=upload_dir or UPLOAD_DIR,
            session_factory=session_factory,
            max_bytes=sys.maxsize,
        )
        for name in BACKENDS
    }
    src, dst = storages[source], storages[target]
    counts = {"migrated": 0, "missing": 0, "failed": 0, "skipped": 0}

    db = session_factory()
    try:
        pending = (
            db.query(TaskAttachment)
            .filter(TaskAttachment.storage_backend == source)
            .order_by(TaskAttachment.id)
            .all()
        )
        print(f"[MIGRATION] {len(pending)} attachment(s) in '{source}' to move to '{target}'")

        for attachment in pending:
            label = f"attachment_id={attachment.id} ref={attachment.storage_ref}"
            if dry_run:
                print(f"[MIGRATION] (dry run) would migrate {label}")
                counts["skipped"] += 1
                continue

            try:
                payload = b"".join(src.open(attachment.storage_ref))
            except StoredObjectNotFound:
                print(f"[MIGRATION] ⚠️  Source bytes missing for {label}, leaving record unchanged")
                counts["missing"] += 1
                continue

            stored = dst.store(
                BytesIO(payload),
                attachment.filename,
                attachment.mimetype,
                metadata={"task_id": attachment.task_id, "migrated_from": attachment.storage_ref},
            )

            old_reference = attachment.storage_ref
            attachment.storage_ref = stored.reference
            attachment.storage_backend = target
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                dst.delete(stored.reference)
                print(f"[MIGRATION] ❌ Failed to update {label}: {e}")
                counts["failed"] += 1
                continue

            src.delete(old_reference)
            counts["migrated"] += 1
            print(f"[MIGRATION] ✅ {old_reference} -> {stored.reference}")
    finally:
        db.close()
        for storage in storages.values():
            storage.close()

    print(
        f"[MIGRATION] Done: migrated={counts['migrated']}, missing={counts['missing']}, "
        f"failed={counts['failed']}, skipped={counts['skipped']}"
    )
    return counts


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Move task attachments between storage backends")
    parser.add_argument("--to", dest="target", choices=BACKENDS, required=True, help="Target backend")
    parser.add_argument("--upload-dir", default=None, help=f"Disk storage directory (default: {UPLOAD_DIR})")
    parser.add_argument("--dry-run", action="store_true", help="List what would move without changing anything")
    args = parser.parse_args(argv)

    init_db()
    counts = migrate(args.target, upload_dir=args.upload_dir, dry_run=args.dry_run)
    return 1 if counts["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
