"""Shared fixtures: in-memory database, API client and user factories."""
import os

# Configure before anything imports taskboard_core.config
os.environ["TASKBOARD_DATABASE_URL"] = "sqlite://"
os.environ["TASKBOARD_JWT_SECRET"] = "test-secret-key"
os.environ["TASKBOARD_BCRYPT_ROUNDS"] = "4"
os.environ["TASKBOARD_ENVIRONMENT"] = "development"

import pytest
from fastapi.testclient import TestClient

from taskboard_core import models
from taskboard_core.api.dependencies import get_storage
from taskboard_core.api.main import app
from taskboard_core.database import SessionLocal, engine
from taskboard_core.security import hash_password
from taskboard_core.storage import LocalFileStorage


@pytest.fixture
def db():
    """Fresh schema per test; yields a session on the shared in-memory engine."""
    models.Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        models.Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "uploads"), max_file_size=1024 * 1024)


@pytest.fixture
def client(db, storage):
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a user row directly. Returns the User."""
    counter = {"n": 0}

    def _make_user(email=None, role=models.UserRole.MEMBER, is_active=True, password="secret1",
                   first_name="Test", last_name="User"):
        counter["n"] += 1
        user = models.User(
            first_name=first_name,
            last_name=last_name,
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(password),
            role=role,
            is_active=is_active,
            preferences=dict(models.DEFAULT_PREFERENCES),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_project(db):
    """Create a project row directly, optionally with members as (user, role) pairs."""

    def _make_project(owner, name="Launch", members=()):
        project = models.Project(
            name=name,
            owner_id=owner.id,
            settings=dict(models.DEFAULT_PROJECT_SETTINGS),
            metrics=dict(models.DEFAULT_PROJECT_METRICS),
        )
        for user, role in members:
            project.members.append(models.ProjectMember(user_id=user.id, role=role))
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    return _make_project


@pytest.fixture
def make_task(db):
    """Create a task row directly."""

    def _make_task(project, creator, title="Write spec", status=models.TaskStatus.TODO, assignee=None):
        task = models.Task(
            title=title,
            project_id=project.id,
            created_by_id=creator.id,
            assigned_to_id=assignee.id if assignee else None,
            status=status,
            labels=[],
        )
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make_task


@pytest.fixture
def register(client):
    """Register through the API. Returns (user payload, auth headers)."""
    counter = {"n": 0}

    def _register(email=None, password="secret1", first_name="Test", last_name="User", role=None):
        counter["n"] += 1
        payload = {
            "firstName": first_name,
            "lastName": last_name,
            "email": email or f"api{counter['n']}@example.com",
            "password": password,
        }
        if role:
            payload["role"] = role
        response = client.post("/api/auth/register", json=payload)
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return data["user"], {"Authorization": f"Bearer {data['token']}"}

    return _register
