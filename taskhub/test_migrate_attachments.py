"""
Backfill of attachments between storage backends.
"""

import pytest

from taskhub.config import MAX_UPLOAD_BYTES
from taskhub.conftest import auth, create_task
from taskhub.db import SessionLocal
from taskhub.migrate_attachments import migrate
from taskhub.models import TaskAttachment
from taskhub.storage import DatabaseStorage, DiskStorage


@pytest.fixture
def disk_upload(client, users, project, tmp_path):
    """One attachment written by the disk backend."""
    upload_dir = tmp_path / "uploads"
    client.app.state.storage = DiskStorage(upload_dir, max_bytes=MAX_UPLOAD_BYTES)
    member = users["member"]
    task = create_task(client, member["token"], project["id"], member["id"])
    response = client.post(
        f"/api/tasks/{task['id']}/attachments",
        files={"file": ("report.txt", b"quarterly numbers", "text/plain")},
        headers=auth(member["token"]),
    )
    assert response.status_code == 201
    return {"task": task, "attachment": response.json(), "upload_dir": upload_dir}


def test_disk_to_database_and_back(client, users, disk_upload):
    old_ref = disk_upload["attachment"]["storage_ref"]
    upload_dir = disk_upload["upload_dir"]

    counts = migrate("database", upload_dir=str(upload_dir))
    assert counts["migrated"] == 1
    assert not (upload_dir / old_ref).exists()

    db = SessionLocal()
    try:
        record = db.get(TaskAttachment, disk_upload["attachment"]["id"])
        assert record.storage_backend == "database"
        new_ref = record.storage_ref
    finally:
        db.close()
    assert new_ref != old_ref

    # Readable through the API once the deployment switches backends
    client.app.state.storage = DatabaseStorage(SessionLocal, max_bytes=MAX_UPLOAD_BYTES)
    task_id = disk_upload["task"]["id"]
    response = client.get(
        f"/api/tasks/{task_id}/attachments/{disk_upload['attachment']['id']}",
        headers=auth(users["member"]["token"]),
    )
    assert response.status_code == 200
    assert response.content == b"quarterly numbers"

    counts = migrate("disk", upload_dir=str(upload_dir))
    assert counts["migrated"] == 1
    assert not client.app.state.storage.exists(new_ref)


def test_dry_run_changes_nothing(disk_upload):
    counts = migrate("database", upload_dir=str(disk_upload["upload_dir"]), dry_run=True)
    assert counts == {"migrated": 0, "missing": 0, "failed": 0, "skipped": 1}
    assert (disk_upload["upload_dir"] / disk_upload["attachment"]["storage_ref"]).exists()


def test_missing_source_bytes_leave_record_unchanged(disk_upload):
    (disk_upload["upload_dir"] / disk_upload["attachment"]["storage_ref"]).unlink()

    counts = migrate("database", upload_dir=str(disk_upload["upload_dir"]))
    assert counts["missing"] == 1

    db = SessionLocal()
    try:
        assert db.get(TaskAttachment, disk_upload["attachment"]["id"]).storage_backend == "disk"
    finally:
        db.close()


def test_unknown_target_rejected():
    with pytest.raises(ValueError):
        migrate("s3")
