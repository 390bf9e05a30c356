"""Storage service for the FixIT API"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select

from fixit_api.database import AsyncSessionLocal, Issue, IssueComment, User, UserSkill
from fixit_api.services.lifecycle import IssueLifecycleGuard, IssueStatus
from fixit_api.services.skill_matcher import (
    DEFAULT_SKILL,
    Candidate,
    SkillProfile,
    normalize_skill,
)

logger = logging.getLogger(__name__)

ISSUE_UPDATABLE_FIELDS = {
    "title",
    "description",
    "category",
    "priority",
    "estimated_time",
    "building",
    "floor",
    "room",
}


class ResourceNotFoundError(Exception):
    """Raised when a user, issue or skill does not exist"""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


def candidate_from_user(user: User) -> Candidate:
    """Project a user row onto the skill matcher's input type"""
    return Candidate(
        user_id=str(user.user_id),
        name=user.full_name,
        skills=tuple(
            SkillProfile(name=s.name, proficiency=s.proficiency, verified=s.verified)
            for s in user.skills
        ),
        rating_average=user.rating_average,
        issues_resolved=user.issues_resolved,
    )


def _parse_id(raw: Any, resource: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise ResourceNotFoundError(resource, raw) from e


class StorageService:
    """Storage service for users, skills, issues and comments"""

    def __init__(self):
        pass

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """Perform database health check"""
        try:
            async with AsyncSessionLocal() as session:
                users_count = await session.scalar(select(func.count(User.user_id)))
                issues_count = await session.scalar(select(func.count(Issue.issue_id)))

                return {
                    "database_connected": True,
                    "total_users": users_count or 0,
                    "total_issues": issues_count or 0,
                }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "database_connected": False,
                "error": str(e),
                "total_users": 0,
                "total_issues": 0,
            }

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: Any) -> User | None:
        """Get a user by id"""
        try:
            uid = _parse_id(user_id, "User")
        except ResourceNotFoundError:
            return None
        async with AsyncSessionLocal() as session:
            return await session.get(User, uid)

    async def list_users(
        self,
        skill: str | None = None,
        department: str | None = None,
        search: str | None = None,
        exclude_user_id: Any = None,
        limit: int = 100,
    ) -> list[User]:
        """List users with optional skill, department and name filters"""
        query = select(User)

        if skill:
            query = query.where(
                User.user_id.in_(
                    select(UserSkill.user_id).where(
                        UserSkill.name == normalize_skill(skill)
                    )
                )
            )
        if department:
            query = query.where(func.lower(User.department) == department.lower())
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(User.first_name).like(pattern),
                    func.lower(User.last_name).like(pattern),
                    func.lower(User.email).like(pattern),
                )
            )
        if exclude_user_id is not None:
            query = query.where(User.user_id != _parse_id(exclude_user_id, "User"))

        query = query.order_by(User.user_id).limit(limit)

        async with AsyncSessionLocal() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_users_by_skills(
        self, skills: list[str], exclude_user_id: Any = None
    ) -> list[User]:
        """Users holding at least one of the given skills, in id order"""
        keys = [normalize_skill(s) for s in skills if s.strip()]
        if not keys:
            return []

        query = select(User).where(
            User.user_id.in_(
                select(UserSkill.user_id).where(UserSkill.name.in_(keys))
            )
        )
        if exclude_user_id is not None:
            query = query.where(User.user_id != _parse_id(exclude_user_id, "User"))

        async with AsyncSessionLocal() as session:
            result = await session.execute(query.order_by(User.user_id))
            users = list(result.scalars().all())

        logger.info(f"Found {len(users)} users with skills {keys}")
        return users

    async def get_top_contributors(self, limit: int = 5) -> list[User]:
        """Users ordered by resolved issues, then points"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(User)
                .where(User.issues_resolved > 0)
                .order_by(User.issues_resolved.desc(), User.points.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def update_user_skills(
        self, user_id: Any, skills: list[tuple[str, str]]
    ) -> User:
        """Replace a user's skill set; unchanged skills keep their verification"""
        uid = _parse_id(user_id, "User")
        async with AsyncSessionLocal() as session:
            user = await session.get(User, uid)
            if user is None:
                raise ResourceNotFoundError("User", user_id)

            existing = {s.name: s for s in user.skills}
            updated: list[UserSkill] = []
            for name, proficiency in skills:
                key = normalize_skill(name)
                if not key or any(s.name == key for s in updated):
                    continue
                previous = existing.get(key)
                if previous is not None:
                    # A changed proficiency needs to be verified again
                    if previous.proficiency != proficiency:
                        previous.proficiency = proficiency
                        previous.verified = False
                        previous.verified_by = None
                    updated.append(previous)
                else:
                    updated.append(
                        UserSkill(name=key, proficiency=proficiency, verified=False)
                    )

            user.skills = updated
            await session.commit()
            logger.info(f"Updated skills for user {uid}: {[s.name for s in updated]}")
            return await self._reload_user(session, uid)

    async def verify_user_skill(
        self, user_id: Any, skill_name: str, verifier_id: Any
    ) -> User:
        """Mark one of a user's skills as verified by a privileged user"""
        uid = _parse_id(user_id, "User")
        key = normalize_skill(skill_name)
        async with AsyncSessionLocal() as session:
            skill = await session.get(UserSkill, (uid, key))
            if skill is None:
                raise ResourceNotFoundError("Skill", f"{key} for user {uid}")

            skill.verified = True
            skill.verified_by = _parse_id(verifier_id, "User")
            await session.commit()
            logger.info(f"Skill '{key}' of user {uid} verified by {verifier_id}")
            return await self._reload_user(session, uid)

    async def _reload_user(self, session, user_id: int) -> User:
        result = await session.execute(
            select(User)
            .where(User.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def list_issues(
        self,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        search: str | None = None,
        exclude_posted_by: Any = None,
        owner_id: Any = None,
        assignee_id: Any = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Issue]:
        """List issues, newest first"""
        query = select(Issue)

        if status:
            query = query.where(Issue.status == status)
        if priority:
            query = query.where(Issue.priority == priority)
        if category:
            query = query.where(Issue.category == category)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(Issue.title).like(pattern),
                    func.lower(Issue.description).like(pattern),
                )
            )
        if exclude_posted_by is not None:
            query = query.where(
                Issue.owner_id != _parse_id(exclude_posted_by, "User")
            )
        if owner_id is not None:
            query = query.where(Issue.owner_id == _parse_id(owner_id, "User"))
        if assignee_id is not None:
            query = query.where(Issue.assignee_id == _parse_id(assignee_id, "User"))

        query = query.order_by(Issue.created_at.desc()).limit(limit).offset(offset)

        async with AsyncSessionLocal() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_issue(self, issue_id: Any) -> Issue | None:
        """Get an issue with owner, assignee and comments loaded"""
        try:
            iid = _parse_id(issue_id, "Issue")
        except ResourceNotFoundError:
            return None
        async with AsyncSessionLocal() as session:
            return await session.get(Issue, iid)

    async def create_issue(self, owner_id: Any, fields: dict[str, Any]) -> Issue:
        """Create an open issue owned by owner_id"""
        uid = _parse_id(owner_id, "User")
        async with AsyncSessionLocal() as session:
            if await session.get(User, uid) is None:
                raise ResourceNotFoundError("User", owner_id)

            issue = Issue(
                owner_id=uid,
                status=IssueStatus.OPEN.value,
                required_skills=json.dumps(fields.pop("required_skills")),
                tags=json.dumps(fields.pop("tags", [])),
                **{k: v for k, v in fields.items() if k in ISSUE_UPDATABLE_FIELDS},
            )
            session.add(issue)
            await session.commit()
            logger.info(f"Issue {issue.issue_id} created by user {uid}")
            return await self._reload_issue(session, issue.issue_id)

    async def update_issue(
        self, issue_id: Any, acting_user_id: Any, changes: dict[str, Any]
    ) -> Issue:
        """Edit an issue; owner only, and only while it is not resolved/closed"""
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            IssueLifecycleGuard.for_issue(issue).ensure_can_edit(acting_user_id)

            if "required_skills" in changes:
                issue.required_skills = json.dumps(changes.pop("required_skills"))
            if "tags" in changes:
                issue.tags = json.dumps(changes.pop("tags"))
            for key, value in changes.items():
                if key in ISSUE_UPDATABLE_FIELDS:
                    setattr(issue, key, value)

            await session.commit()
            logger.info(f"Issue {issue.issue_id} updated by user {acting_user_id}")
            return await self._reload_issue(session, issue.issue_id)

    async def delete_issue(self, issue_id: Any, acting_user_id: Any) -> None:
        """Delete an issue; owner only, and only while it is not resolved/closed"""
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            IssueLifecycleGuard.for_issue(issue).ensure_can_delete(acting_user_id)

            # Comments go with the issue through the relationship cascade
            await session.delete(issue)
            await session.commit()
            logger.info(f"Issue {issue_id} deleted by user {acting_user_id}")

    async def find_helper_pool(self, issue: Issue) -> list[User]:
        """Candidate pool for an issue: users sharing a required skill, minus the owner"""
        return await self.find_users_by_skills(
            issue.required_skill_list or [DEFAULT_SKILL], exclude_user_id=issue.owner_id
        )

    async def assign_issue(
        self, issue_id: Any, acting_user_id: Any, assignee_id: Any
    ) -> Issue:
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            IssueLifecycleGuard.for_issue(issue).ensure_can_assign(
                acting_user_id, assignee_id
            )

            assignee_uid = _parse_id(assignee_id, "User")
            if await session.get(User, assignee_uid) is None:
                raise ResourceNotFoundError("User", assignee_id)

            issue.assignee_id = assignee_uid
            issue.status = IssueStatus.ASSIGNED.value
            await session.commit()
            logger.info(f"Issue {issue.issue_id} assigned to user {assignee_uid}")
            return await self._reload_issue(session, issue.issue_id)

    async def start_issue(self, issue_id: Any, acting_user_id: Any) -> Issue:
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            IssueLifecycleGuard.for_issue(issue).ensure_can_start(acting_user_id)

            issue.status = IssueStatus.IN_PROGRESS.value
            await session.commit()
            logger.info(f"Issue {issue.issue_id} in progress")
            return await self._reload_issue(session, issue.issue_id)

    async def resolve_issue(
        self,
        issue_id: Any,
        acting_user_id: Any,
        solver_id: Any,
        solution: str,
        points_requested: int,
    ) -> Issue:
        """Mark an issue solved and credit the solver"""
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            guard = IssueLifecycleGuard.for_issue(issue)
            guard.ensure_can_resolve(acting_user_id)

            solver_uid = _parse_id(solver_id, "User")
            solver = await session.get(User, solver_uid)
            if solver is None:
                raise ResourceNotFoundError("User", solver_id)

            points = guard.points_for(solver_uid, points_requested)
            issue.status = IssueStatus.RESOLVED.value
            issue.solved_by_id = solver_uid
            issue.solution = solution
            issue.points_awarded = points
            issue.solved_at = datetime.now(UTC)

            if not guard.is_owner(solver_uid):
                solver.issues_resolved += 1
                solver.points += points

            await session.commit()
            logger.info(
                f"Issue {issue.issue_id} resolved by user {solver_uid} "
                f"({points} points awarded)"
            )
            return await self._reload_issue(session, issue.issue_id)

    async def close_issue(
        self, issue_id: Any, acting_user_id: Any, is_admin: bool = False
    ) -> Issue:
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            IssueLifecycleGuard.for_issue(issue).ensure_can_close(
                acting_user_id, is_admin=is_admin
            )

            issue.status = IssueStatus.CLOSED.value
            await session.commit()
            logger.info(f"Issue {issue.issue_id} closed")
            return await self._reload_issue(session, issue.issue_id)

    async def close_resolved_before(self, cutoff: datetime) -> list[int]:
        """Close every resolved issue solved before the cutoff"""
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Issue).where(
                    Issue.status == IssueStatus.RESOLVED.value,
                    Issue.solved_at < cutoff,
                )
            )
            issues = list(result.scalars().all())
            for issue in issues:
                IssueLifecycleGuard.for_issue(issue).ensure_can_close()
                issue.status = IssueStatus.CLOSED.value

            await session.commit()
            return [issue.issue_id for issue in issues]

    async def add_comment(self, issue_id: Any, author_id: Any, content: str) -> Issue:
        """Append a comment to an issue"""
        async with AsyncSessionLocal() as session:
            issue = await self._require_issue(session, issue_id)
            session.add(
                IssueComment(
                    issue_id=issue.issue_id,
                    author_id=_parse_id(author_id, "User"),
                    content=content,
                )
            )
            await session.commit()
            logger.info(f"Comment added to issue {issue.issue_id} by user {author_id}")
            return await self._reload_issue(session, issue.issue_id)

    async def _require_issue(self, session, issue_id: Any) -> Issue:
        issue = await session.get(Issue, _parse_id(issue_id, "Issue"))
        if issue is None:
            raise ResourceNotFoundError("Issue", issue_id)
        return issue

    async def _reload_issue(self, session, issue_id: int) -> Issue:
        result = await session.execute(
            select(Issue)
            .where(Issue.issue_id == issue_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()


# Global service instance
_storage_service: StorageService | None = None


def get_storage_service() -> StorageService:
    """Get the global storage service instance"""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
