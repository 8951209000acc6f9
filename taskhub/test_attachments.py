"""
taskhub/test_attachments.py

Attachment upload, download and removal against both storage backends.

Tests:
1. Uploaded bytes come back unchanged with their MIME type
2. Oversized or disallowed uploads leave no bytes and no record
3. Delete removes bytes before the record; later reads are 404
4. Reads across backends are refused (409)
5. A failed record write deletes the already-stored bytes
6. Disk references cannot escape the upload directory

Run:
    pytest taskhub/test_attachments.py -v
"""

import pytest
from fastapi import HTTPException

from taskhub.config import MAX_UPLOAD_BYTES
from taskhub.conftest import auth, create_task, register_user
from taskhub.db import SessionLocal
from taskhub.models import StoredFile, StoredFileChunk
from taskhub.storage import DiskStorage, StoredObjectNotFound, build_storage


def stored_count(storage) -> int:
    """Number of payloads currently held by ``storage``."""
    if isinstance(storage, DiskStorage):
        return sum(1 for p in storage.root.iterdir() if p.is_file())
    db = SessionLocal()
    try:
        return db.query(StoredFile).count()
    finally:
        db.close()


@pytest.fixture
def task(client, users, project):
    member = users["member"]
    return create_task(client, member["token"], project["id"], member["id"])


def upload(client, token, task_id, filename="notes.txt", content=b"hello world", mimetype="text/plain"):
    return client.post(
        f"/api/tasks/{task_id}/attachments",
        files={"file": (filename, content, mimetype)},
        headers=auth(token),
    )


class TestUploadAndDownload:

    def test_round_trip(self, client, users, task, storage):
        member = users["member"]
        payload = bytes(range(256)) * 2048  # spans several database chunks

        response = upload(client, member["token"], task["id"], "scan.pdf", payload, "application/pdf")
        assert response.status_code == 201
        attachment = response.json()
        assert attachment["filename"] == "scan.pdf"
        assert attachment["size"] == len(payload)
        assert attachment["storage_backend"] == storage.name
        assert attachment["uploaded_by"]["id"] == member["id"]

        download = client.get(f"/api/tasks/{task['id']}/attachments/{attachment['id']}", headers=auth(member["token"]))
        assert download.status_code == 200
        assert download.content == payload
        assert download.headers["content-type"].startswith("application/pdf")
        assert download.headers["content-disposition"].startswith("attachment")

        by_reference = client.get(f"/api/uploads/{attachment['storage_ref']}", headers=auth(users["owner"]["token"]))
        assert by_reference.status_code == 200
        assert by_reference.content == payload

    def test_disk_reference_keeps_extension(self, client, users, task, storage):
        response = upload(client, users["member"]["token"], task["id"], "photo.PNG", b"\x89PNG", "image/png")
        reference = response.json()["storage_ref"]
        if storage.name == "disk":
            assert reference.endswith(".png")
            assert len(reference) == 32 + len(".png")
        else:
            assert len(reference) == 32

    def test_task_lists_attachment(self, client, users, task, storage):
        upload(client, users["member"]["token"], task["id"])
        body = client.get(f"/api/tasks/{task['id']}", headers=auth(users["owner"]["token"])).json()
        assert [a["filename"] for a in body["attachments"]] == ["notes.txt"]

    def test_outsider_cannot_upload_or_download(self, client, users, task, storage):
        outsider = users["outsider"]["token"]
        assert upload(client, outsider, task["id"]).status_code == 403
        assert stored_count(storage) == 0

        attachment = upload(client, users["member"]["token"], task["id"]).json()
        assert client.get(
            f"/api/tasks/{task['id']}/attachments/{attachment['id']}", headers=auth(outsider)
        ).status_code == 403
        assert client.get(f"/api/uploads/{attachment['storage_ref']}", headers=auth(outsider)).status_code == 403

    def test_upload_to_missing_task_is_404(self, client, users, storage):
        assert upload(client, users["owner"]["token"], 9999).status_code == 404
        assert stored_count(storage) == 0


class TestRejectedUploads:

    def test_oversized_upload_leaves_nothing(self, client, users, task, storage):
        too_big = b"x" * (12 * 1024 * 1024)
        response = upload(client, users["member"]["token"], task["id"], "big.zip", too_big, "application/zip")

        assert response.status_code == 400
        assert "too large" in response.json()["detail"].lower()
        assert stored_count(storage) == 0
        body = client.get(f"/api/tasks/{task['id']}", headers=auth(users["member"]["token"])).json()
        assert body["attachments"] == []

    def test_upload_at_limit_accepted(self, client, users, task, storage):
        exact = b"y" * MAX_UPLOAD_BYTES
        response = upload(client, users["member"]["token"], task["id"], "exact.zip", exact, "application/zip")
        assert response.status_code == 201
        assert response.json()["size"] == MAX_UPLOAD_BYTES

    def test_disallowed_type_rejected(self, client, users, task, storage):
        response = upload(client, users["member"]["token"], task["id"], "run.sh", b"#!/bin/sh", "application/x-sh")
        assert response.status_code == 400
        assert stored_count(storage) == 0

    def test_missing_file_field_rejected(self, client, users, task, storage):
        response = client.post(
            f"/api/tasks/{task['id']}/attachments",
            data={"not_file": "x"},
            headers=auth(users["member"]["token"]),
        )
        assert response.status_code == 400

    def test_failed_record_write_removes_bytes(self, client, users, task, storage, monkeypatch):
        def failing_commit(db, action):
            db.rollback()
            raise HTTPException(status_code=500, detail="Database error")

        monkeypatch.setattr("taskhub.routes_tasks.commit_or_500", failing_commit)
        response = upload(client, users["member"]["token"], task["id"])

        assert response.status_code == 500
        assert stored_count(storage) == 0


class TestDelete:

    def test_delete_then_read_is_404(self, client, users, task, storage):
        member = users["member"]
        attachment = upload(client, member["token"], task["id"]).json()

        response = client.delete(
            f"/api/tasks/{task['id']}/attachments/{attachment['id']}", headers=auth(member["token"])
        )
        assert response.status_code == 200
        assert response.json()["attachments"] == []
        assert not storage.exists(attachment["storage_ref"])
        assert stored_count(storage) == 0

        assert client.get(
            f"/api/tasks/{task['id']}/attachments/{attachment['id']}", headers=auth(member["token"])
        ).status_code == 404
        assert client.get(f"/api/uploads/{attachment['storage_ref']}", headers=auth(member["token"])).status_code == 404

    def test_only_uploader_or_manager_deletes(self, client, users, project, task, storage):
        other = register_user(client, "Sam Second", "sam@example.com")
        client.post(
            f"/api/projects/{project['id']}/members",
            json={"user_id": other["id"]},
            headers=auth(users["owner"]["token"]),
        )
        attachment = upload(client, users["member"]["token"], task["id"]).json()
        url = f"/api/tasks/{task['id']}/attachments/{attachment['id']}"

        assert client.delete(url, headers=auth(other["token"])).status_code == 403
        assert storage.exists(attachment["storage_ref"])
        assert client.delete(url, headers=auth(users["owner"]["token"])).status_code == 200

    def test_task_delete_removes_bytes(self, client, users, task, storage):
        attachment = upload(client, users["member"]["token"], task["id"]).json()
        assert client.delete(f"/api/tasks/{task['id']}", headers=auth(users["owner"]["token"])).status_code == 200
        assert not storage.exists(attachment["storage_ref"])


class TestBackendMismatch:

    def test_read_from_other_backend_conflicts(self, client, users, task, tmp_path):
        client.app.state.storage = build_storage(
            "disk", upload_dir=tmp_path / "disk", session_factory=SessionLocal, max_bytes=MAX_UPLOAD_BYTES
        )
        attachment = upload(client, users["member"]["token"], task["id"]).json()

        client.app.state.storage = build_storage(
            "database", upload_dir=tmp_path / "disk", session_factory=SessionLocal, max_bytes=MAX_UPLOAD_BYTES
        )
        response = client.get(
            f"/api/tasks/{task['id']}/attachments/{attachment['id']}", headers=auth(users["member"]["token"])
        )
        assert response.status_code == 409


class TestStorageBackends:

    def test_disk_rejects_traversal(self, tmp_path):
        (tmp_path / "secret.txt").write_text("top secret")
        storage = DiskStorage(tmp_path / "uploads")

        for reference in ("../secret.txt", "..%2Fsecret.txt", "/etc/passwd", "a" * 32 + "/x"):
            with pytest.raises(StoredObjectNotFound):
                storage.open(reference)
            assert storage.delete(reference) is False
        assert (tmp_path / "secret.txt").exists()

    def test_uploads_route_unknown_reference_is_404(self, client, users, storage):
        response = client.get("/api/uploads/..%2F..%2Fetc%2Fpasswd", headers=auth(users["owner"]["token"]))
        assert response.status_code == 404

    def test_database_chunks_are_fixed_size(self, client, users, task):
        storage = build_storage("database", upload_dir="unused", session_factory=SessionLocal, max_bytes=MAX_UPLOAD_BYTES)
        client.app.state.storage = storage
        payload = b"z" * (storage.chunk_size * 2 + 10)
        reference = upload(client, users["member"]["token"], task["id"], "z.txt", payload).json()["storage_ref"]

        db = SessionLocal()
        try:
            sizes = [
                len(row.data)
                for row in db.query(StoredFileChunk).filter(StoredFileChunk.file_id == reference).order_by(StoredFileChunk.n)
            ]
            stored = db.get(StoredFile, reference)
            assert stored.length == len(payload)
        finally:
            db.close()
        assert sizes == [storage.chunk_size, storage.chunk_size, 10]
