"""Tests for the storage service against a real SQLite database."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fixit_api.database import Base, Issue, IssueComment, User, UserSkill
from fixit_api.services.lifecycle import IssuePermissionError, IssueStateError
from fixit_api.services.storage_service import StorageService


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fixit.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    with patch("fixit_api.services.storage_service.AsyncSessionLocal", factory):
        yield factory

    await engine.dispose()


async def seed(session_factory, *rows):
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


def issue_row(issue_id=5, status="open", **fields):
    values = {
        "title": "VPN down",
        "description": "Cannot reach the intranet from home",
        "category": "network",
        "required_skills": '["network"]',
        "owner_id": 1,
    }
    values.update(fields)
    return Issue(issue_id=issue_id, status=status, **values)


@pytest_asyncio.fixture
async def storage(session_factory):
    await seed(
        session_factory,
        User(user_id=1, email="olivia@example.com", first_name="Olivia", last_name="Owner"),
        User(
            user_id=2,
            email="henry@example.com",
            first_name="Henry",
            last_name="Helper",
            skills=[UserSkill(name="network", proficiency="expert", verified=True, verified_by=99)],
        ),
        User(user_id=99, email="ada@example.com", first_name="Ada", last_name="Admin", role="admin"),
    )
    await seed(session_factory, issue_row())
    return StorageService()


class TestResolveIssue:
    @pytest.mark.asyncio
    async def test_solver_is_credited(self, storage):
        issue = await storage.resolve_issue("5", "1", "2", "Restarted the VPN gateway", 15)

        assert issue.status == "resolved"
        assert issue.solved_by_id == 2
        assert issue.solved_by.full_name == "Henry Helper"
        assert issue.solution == "Restarted the VPN gateway"
        assert issue.points_awarded == 15
        assert issue.solved_at is not None

        helper = await storage.get_user("2")
        owner = await storage.get_user("1")
        assert (helper.issues_resolved, helper.points) == (1, 15)
        assert (owner.issues_resolved, owner.points) == (0, 0)

    @pytest.mark.asyncio
    async def test_owner_solving_own_issue_earns_nothing(self, storage):
        issue = await storage.resolve_issue("5", "1", "1", "Plugged the cable back in", 15)

        assert issue.status == "resolved"
        assert issue.solved_by_id == 1
        assert issue.points_awarded == 0

        owner = await storage.get_user("1")
        assert (owner.issues_resolved, owner.points) == (0, 0)
        assert await storage.get_top_contributors() == []

    @pytest.mark.asyncio
    async def test_rejected_resolve_leaves_no_resolution_record(self, storage):
        with pytest.raises(IssuePermissionError):
            await storage.resolve_issue("5", "2", "2", "I fixed it", 15)

        issue = await storage.get_issue("5")
        assert issue.status == "open"
        assert issue.solved_by_id is None
        assert issue.solved_at is None
        assert issue.points_awarded is None

    @pytest.mark.asyncio
    async def test_cannot_resolve_twice(self, storage):
        await storage.resolve_issue("5", "1", "2", "Restarted the VPN gateway", 15)

        with pytest.raises(IssueStateError):
            await storage.resolve_issue("5", "1", "2", "Again", 15)

        helper = await storage.get_user("2")
        assert (helper.issues_resolved, helper.points) == (1, 15)

    @pytest.mark.asyncio
    async def test_top_contributors_follow_resolutions(self, storage):
        await storage.resolve_issue("5", "1", "2", "Restarted the VPN gateway", 15)

        top = await storage.get_top_contributors()

        assert [user.user_id for user in top] == [2]


class TestUserSkills:
    @pytest.mark.asyncio
    async def test_changed_proficiency_clears_verification(self, storage):
        user = await storage.update_user_skills("2", [("Network", "intermediate"), ("Printers", "beginner")])

        skills = {skill.name: skill for skill in user.skills}
        assert set(skills) == {"network", "printers"}
        assert skills["network"].proficiency == "intermediate"
        assert skills["network"].verified is False
        assert skills["network"].verified_by is None
        assert skills["printers"].verified is False

    @pytest.mark.asyncio
    async def test_unchanged_proficiency_keeps_verification(self, storage):
        user = await storage.update_user_skills("2", [("network", "expert"), ("printers", "beginner")])

        skills = {skill.name: skill for skill in user.skills}
        assert skills["network"].verified is True
        assert skills["network"].verified_by == 99

    @pytest.mark.asyncio
    async def test_omitted_skills_are_removed(self, storage):
        user = await storage.update_user_skills("2", [("printers", "advanced")])

        assert [skill.name for skill in user.skills] == ["printers"]

    @pytest.mark.asyncio
    async def test_verify_after_change(self, storage):
        await storage.update_user_skills("2", [("network", "advanced")])

        user = await storage.verify_user_skill("2", "Network", "99")

        assert user.skills[0].verified is True
        assert user.skills[0].verified_by == 99


class TestCloseResolvedBefore:
    @pytest.mark.asyncio
    async def test_only_old_resolved_issues_are_closed(self, storage, session_factory):
        now = datetime.now(UTC)
        await seed(
            session_factory,
            issue_row(6, "resolved", solved_by_id=2, points_awarded=10, solved_at=now - timedelta(days=10)),
            issue_row(7, "resolved", solved_by_id=2, points_awarded=10, solved_at=now - timedelta(days=1)),
        )

        closed = await storage.close_resolved_before(now - timedelta(days=7))

        assert closed == [6]
        assert (await storage.get_issue("6")).status == "closed"
        assert (await storage.get_issue("7")).status == "resolved"
        assert (await storage.get_issue("5")).status == "open"


class TestDeleteIssue:
    @pytest.mark.asyncio
    async def test_comments_are_removed_with_the_issue(self, storage, session_factory):
        issue = await storage.add_comment("5", "2", "Is it only on wifi?")
        assert [c.content for c in issue.comments] == ["Is it only on wifi?"]

        await storage.delete_issue("5", "1")

        assert await storage.get_issue("5") is None
        async with session_factory() as session:
            remaining = await session.scalar(select(func.count(IssueComment.comment_id)))
        assert remaining == 0

    @pytest.mark.asyncio
    async def test_non_owner_cannot_delete(self, storage):
        await storage.add_comment("5", "2", "Is it only on wifi?")

        with pytest.raises(IssuePermissionError):
            await storage.delete_issue("5", "2")

        issue = await storage.get_issue("5")
        assert len(issue.comments) == 1


class TestUpdateIssue:
    @pytest.mark.asyncio
    async def test_changes_are_persisted(self, storage):
        await storage.update_issue("5", "1", {"title": "VPN drops every hour", "required_skills": ["vpn"]})

        issue = await storage.get_issue("5")
        assert issue.title == "VPN drops every hour"
        assert issue.required_skill_list == ["vpn"]
