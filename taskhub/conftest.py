"""
Shared pytest fixtures for the TaskHub backend.

The test database and upload directory are configured through environment
variables BEFORE any taskhub module is imported (config is read at import).
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

_TEST_DIR = tempfile.mkdtemp(prefix="taskhub-test-")
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'taskhub-test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_DIR, "uploads")
os.environ["ATTACHMENT_STORAGE"] = "disk"
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"

from fastapi.testclient import TestClient  # noqa: E402

from taskhub.config import MAX_UPLOAD_BYTES  # noqa: E402
from taskhub.db import SessionLocal, engine  # noqa: E402
from taskhub.main import app  # noqa: E402
from taskhub.models import Base  # noqa: E402
from taskhub.storage import build_storage  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    """Every test starts from empty tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    # Context manager runs the lifespan (tables + attachment storage)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(params=["disk", "database"])
def storage(request, client, tmp_path):
    """Run the test once per attachment backend."""
    backend = build_storage(
        request.param,
        upload_dir=tmp_path / "uploads",
        session_factory=SessionLocal,
        max_bytes=MAX_UPLOAD_BYTES,
    )
    client.app.state.storage = backend
    return backend


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register_user(client, name: str, email: str, password: str = "secret123", role=None) -> dict:
    """Register through the API and return {"id", "email", "token", "role"}."""
    body = {"name": name, "email": email, "password": password}
    if role is not None:
        body["role"] = role
    response = client.post("/api/users/register", json=body)
    assert response.status_code == 201, response.text
    data = response.json()
    return {
        "id": data["user"]["id"],
        "email": data["user"]["email"],
        "role": data["user"]["role"],
        "token": data["token"],
    }


def due_in(days: float) -> str:
    """ISO timestamp ``days`` from now (negative for the past)."""
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def users(client):
    """Three users: owner (first user, so also Admin), member, outsider."""
    return {
        "owner": register_user(client, "Olivia Owner", "owner@example.com"),
        "member": register_user(client, "Mario Member", "member@example.com"),
        "outsider": register_user(client, "Oscar Outsider", "outsider@example.com"),
    }


@pytest.fixture
def project(client, users):
    """Project "Alpha" owned by owner with member as a Member."""
    response = client.post(
        "/api/projects",
        json={
            "name": "Alpha",
            "description": "First project",
            "members": [{"user_id": users["member"]["id"], "role": "Member"}],
        },
        headers=auth(users["owner"]["token"]),
    )
    assert response.status_code == 201, response.text
    return response.json()


def create_task(client, token: str, project_id: int, assignee_id: int, **fields) -> dict:
    body = {
        "title": "T1",
        "project_id": project_id,
        "assignee_id": assignee_id,
        "due_date": due_in(3),
    }
    body.update(fields)
    response = client.post("/api/tasks", json=body, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()
