"""Pytest fixtures and configuration."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from sprintboard.core.config import settings
from sprintboard.services import azdo_service, preferences_store

SAMPLE_EXPORT = "\n".join([
    "Issue key,Issue Type,Summary,Assignee,Status,Story Points,Sprint,Project,Due Date",
    "APP-1,Story,Login page,Alice,In Progress,8,Sprint 12 (03-02-25 to 16-02-25),Portal,",
    "APP-2,Story,Signup flow,Alice,To Do,5,Sprint 12 (03-02-25 to 16-02-25),Portal,",
    "APP-3,Task,Audit log,Alice,To Do,3,Sprint 12 (03-02-25 to 16-02-25),Portal,",
    "APP-4,Bug,Crash on save,Bob,Done,2,Sprint 12 (03-02-25 to 16-02-25),Portal,",
    "APP-5,Story,Reports,Bob,In Progress,3,Sprint 12 (03-02-25 to 16-02-25),Analytics,",
    "APP-6,Sub-task,Write tests,Bob,To Do,1,Sprint 12 (03-02-25 to 16-02-25),Analytics,",
    "APP-7,Story,Old feature,Carol,In Progress,0,Sprint 11 (20-01-25 to 02-02-25),Analytics,10/02/25",
])

TODAY = date(2025, 2, 10)


@pytest.fixture
def sample_export() -> str:
    return SAMPLE_EXPORT


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the store at a temp database and hide any real relay credentials."""
    monkeypatch.setattr(settings, "db_path", str(tmp_path / "prefs.db"))
    monkeypatch.setattr(settings, "azdo_org_url", None)
    monkeypatch.setattr(settings, "azdo_pat", None)
    monkeypatch.setattr(settings, "azdo_project", None)
    monkeypatch.setattr(settings, "azdo_config_path", None)
    monkeypatch.setattr(azdo_service, "PROJECT_ROOT", tmp_path / "root")
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def store():
    """Initialised preferences store."""
    preferences_store.init_db()
    return preferences_store


@pytest.fixture
def client():
    """Test client running the app lifespan."""
    from sprintboard.main import app

    with TestClient(app) as test_client:
        yield test_client
