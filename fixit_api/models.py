"""Data models for the FixIT API"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

from fixit_api.database import Issue, IssueComment, User
from fixit_api.services.skill_matcher import DEFAULT_SKILL, HelperCandidate


class APIModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IssueCategory(str, Enum):
    HARDWARE = "hardware"
    SOFTWARE = "software"
    NETWORK = "network"
    PRINTER = "printer"
    EMAIL = "email"
    ACCESS = "access"
    OTHER = "other"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Proficiency(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class SkillOut(APIModel):
    name: str
    proficiency: str
    verified: bool = False


class ContributionsOut(APIModel):
    issues_resolved: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    rating_average: float = Field(default=0.0, ge=0.0)


class UserSummary(APIModel):
    id: str
    first_name: str
    last_name: str
    name: str
    employee_id: str | None = None


class UserOut(UserSummary):
    email: str
    department: str | None = None
    position: str | None = None
    phone: str | None = None
    location: str | None = None
    bio: str | None = None
    role: str = "user"
    skills: list[SkillOut] = Field(default_factory=list)
    contributions: ContributionsOut = Field(default_factory=ContributionsOut)


class HelperOut(UserOut):
    score: float = Field(ge=0.0, le=1.0)
    matched_skills: list[str] = Field(default_factory=list)


class LocationModel(APIModel):
    building: str | None = None
    floor: str | None = None
    room: str | None = None


class CommentOut(APIModel):
    id: str
    content: str
    posted_by: UserSummary
    created_at: datetime | None = None


class ResolutionOut(APIModel):
    solved_by: UserSummary | None = None
    solution: str | None = None
    points_awarded: int = 0
    solved_at: datetime | None = None


class IssueOut(APIModel):
    id: str
    title: str
    description: str
    category: str
    priority: str
    status: str
    required_skills: list[str]
    tags: list[str] = Field(default_factory=list)
    location: LocationModel = Field(default_factory=LocationModel)
    estimated_time: str | None = None
    posted_by: UserSummary
    assigned_to: UserSummary | None = None
    resolution: ResolutionOut | None = None
    comments: list[CommentOut] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class IssueResponse(APIModel):
    success: bool = True
    data: IssueOut


class IssueListResponse(APIModel):
    success: bool = True
    count: int = Field(ge=0)
    data: list[IssueOut]


class HelpersData(APIModel):
    required_skills: list[str]
    helpers: list[HelperOut]


class HelpersResponse(APIModel):
    success: bool = True
    data: HelpersData


class UserResponse(APIModel):
    success: bool = True
    data: UserOut


class UserListResponse(APIModel):
    success: bool = True
    count: int = Field(ge=0)
    data: list[UserOut]


class TopContributorsData(APIModel):
    top_resolvers: list[UserOut]


class TopContributorsResponse(APIModel):
    success: bool = True
    data: TopContributorsData


class MessageResponse(APIModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    timestamp: str
    database_connected: bool = False
    total_users: int = Field(default=0, ge=0)
    total_issues: int = Field(default=0, ge=0)
    connected_users: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def _clean_skills(skills: list[str]) -> list[str]:
    cleaned: list[str] = []
    for skill in skills:
        key = " ".join(skill.split()).lower()
        if key and key not in cleaned:
            cleaned.append(key)
    return cleaned or [DEFAULT_SKILL]


class IssueCreateRequest(APIModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: IssueCategory
    priority: IssuePriority = IssuePriority.MEDIUM
    required_skills: list[str] = Field(default_factory=lambda: [DEFAULT_SKILL])
    tags: list[str] = Field(default_factory=list)
    location: LocationModel = Field(default_factory=LocationModel)
    estimated_time: str | None = None

    @field_validator("required_skills")
    @classmethod
    def default_required_skills(cls, value: list[str]) -> list[str]:
        return _clean_skills(value)


class IssueUpdateRequest(APIModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, min_length=1)
    category: IssueCategory | None = None
    priority: IssuePriority | None = None
    required_skills: list[str] | None = None
    tags: list[str] | None = None
    location: LocationModel | None = None
    estimated_time: str | None = None

    # Omitted fields stay untouched; an explicit null cannot clear a required column
    @field_validator("title", "description", "category", "priority")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    @field_validator("required_skills")
    @classmethod
    def default_required_skills(cls, value: list[str] | None) -> list[str]:
        if value is None:
            raise ValueError("may be omitted but not null")
        return _clean_skills(value)

    @field_validator("tags")
    @classmethod
    def null_tags_clear(cls, value: list[str] | None) -> list[str]:
        return [] if value is None else value


class AssignRequest(APIModel):
    assigned_to: str = Field(min_length=1)


class ResolveRequest(APIModel):
    solved_by: str = Field(min_length=1)
    solution: str = ""
    points_awarded: int | None = Field(default=None, ge=0)


class CommentRequest(APIModel):
    content: str = Field(min_length=1, max_length=5000)


class SkillInput(APIModel):
    name: str = Field(min_length=1)
    proficiency: Proficiency = Proficiency.INTERMEDIATE


class SkillsUpdateRequest(APIModel):
    skills: list[SkillInput]


# ---------------------------------------------------------------------------
# Realtime channel frames (client -> server)
# ---------------------------------------------------------------------------


class RealtimeFrame(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class MessageSendPayload(APIModel):
    to_user_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    issue_id: str | None = None


class HelpOfferPayload(APIModel):
    to_user_id: str = Field(min_length=1)
    issue_id: str = Field(min_length=1)
    note: str | None = None


class HelpAskPayload(APIModel):
    to_user_id: str = Field(min_length=1)
    issue_id: str = Field(min_length=1)
    message: str | None = None


class HelpRespondPayload(APIModel):
    to_user_id: str = Field(min_length=1)
    issue_id: str = Field(min_length=1)
    accepted: StrictBool
    note: str | None = None


# ---------------------------------------------------------------------------
# ORM -> API conversion
# ---------------------------------------------------------------------------


def user_summary(user: User) -> UserSummary:
    return UserSummary(
        id=str(user.user_id),
        first_name=user.first_name,
        last_name=user.last_name,
        name=user.full_name,
        employee_id=user.employee_id,
    )


def user_out(user: User) -> UserOut:
    return UserOut(
        **user_summary(user).model_dump(),
        email=user.email,
        department=user.department,
        position=user.position,
        phone=user.phone,
        location=user.location,
        bio=user.bio,
        role=user.role,
        skills=[
            SkillOut(name=s.name, proficiency=s.proficiency, verified=s.verified)
            for s in user.skills
        ],
        contributions=ContributionsOut(
            issues_resolved=user.issues_resolved,
            points=user.points,
            rating_average=user.rating_average,
        ),
    )


def helper_out(user: User, helper: HelperCandidate) -> HelperOut:
    return HelperOut(
        **user_out(user).model_dump(),
        score=helper.score,
        matched_skills=helper.matched_skills,
    )


def comment_out(comment: IssueComment) -> CommentOut:
    return CommentOut(
        id=str(comment.comment_id),
        content=comment.content,
        posted_by=user_summary(comment.author),
        created_at=comment.created_at,
    )


def issue_out(issue: Issue) -> IssueOut:
    resolution = None
    if issue.status in ("resolved", "closed"):
        resolution = ResolutionOut(
            solved_by=user_summary(issue.solved_by) if issue.solved_by else None,
            solution=issue.solution,
            points_awarded=issue.points_awarded or 0,
            solved_at=issue.solved_at,
        )

    return IssueOut(
        id=str(issue.issue_id),
        title=issue.title,
        description=issue.description,
        category=issue.category,
        priority=issue.priority,
        status=issue.status,
        required_skills=issue.required_skill_list or [DEFAULT_SKILL],
        tags=issue.tag_list,
        location=LocationModel(
            building=issue.building, floor=issue.floor, room=issue.room
        ),
        estimated_time=issue.estimated_time,
        posted_by=user_summary(issue.owner),
        assigned_to=user_summary(issue.assignee) if issue.assignee else None,
        resolution=resolution,
        comments=[comment_out(c) for c in issue.comments],
        created_at=issue.created_at,
        updated_at=issue.updated_at,
    )