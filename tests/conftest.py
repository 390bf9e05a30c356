"""Pytest fixtures for FixIT tests."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


def make_skill(name, proficiency="intermediate", verified=False):
    return SimpleNamespace(name=name, proficiency=proficiency, verified=verified)


def make_user(user_id, first_name="Test", last_name="User", skills=(), **overrides):
    """Build an object shaped like a User row."""
    user = SimpleNamespace(
        user_id=user_id,
        email=f"user{user_id}@example.com",
        first_name=first_name,
        last_name=last_name,
        full_name=f"{first_name} {last_name}",
        employee_id=f"E{user_id:04d}",
        department="IT",
        position="Engineer",
        phone=None,
        location=None,
        bio=None,
        role="user",
        issues_resolved=0,
        points=0,
        rating_average=0.0,
        skills=list(skills),
    )
    for key, value in overrides.items():
        setattr(user, key, value)
    return user


def make_issue(issue_id, owner, status="open", assignee=None, required_skills=("general",), **overrides):
    """Build an object shaped like an Issue row."""
    now = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)
    issue = SimpleNamespace(
        issue_id=issue_id,
        title=f"Issue {issue_id}",
        description="Something is broken",
        category="network",
        priority="medium",
        status=status,
        required_skill_list=list(required_skills),
        tag_list=[],
        building=None,
        floor=None,
        room=None,
        estimated_time=None,
        owner_id=owner.user_id,
        owner=owner,
        assignee_id=assignee.user_id if assignee else None,
        assignee=assignee,
        solved_by=None,
        solution=None,
        points_awarded=0,
        solved_at=None,
        comments=[],
        created_at=now,
        updated_at=now,
    )
    for key, value in overrides.items():
        setattr(issue, key, value)
    return issue


@pytest.fixture
def owner():
    return make_user(1, "Olivia", "Owner")


@pytest.fixture
def helper():
    return make_user(2, "Henry", "Helper", skills=[make_skill("network", "expert", True)])


@pytest.fixture
def owner_token(owner):
    from fixit_api.auth import create_access_token

    return create_access_token(str(owner.user_id), owner.full_name)


@pytest.fixture
def helper_token(helper):
    from fixit_api.auth import create_access_token

    return create_access_token(str(helper.user_id), helper.full_name)


@pytest.fixture
def admin_token():
    from fixit_api.auth import create_access_token

    return create_access_token("99", "Ada Admin", role="admin")


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def issue_factory():
    return make_issue


@pytest.fixture
def skill_factory():
    return make_skill


@pytest.fixture
def mock_storage():
    """Replace the API's storage service with an async mock."""
    storage = MagicMock()
    for name in (
        "health_check",
        "get_user",
        "list_users",
        "find_users_by_skills",
        "get_top_contributors",
        "update_user_skills",
        "verify_user_skill",
        "list_issues",
        "get_issue",
        "create_issue",
        "update_issue",
        "delete_issue",
        "find_helper_pool",
        "assign_issue",
        "start_issue",
        "resolve_issue",
        "close_issue",
        "add_comment",
    ):
        setattr(storage, name, AsyncMock())

    with patch("fixit_api.main.storage_service", storage):
        yield storage


@pytest.fixture
def client():
    """Test client that skips the lifespan (no database, no scheduler)."""
    from fastapi.testclient import TestClient

    from fixit_api.main import app

    return TestClient(app)
