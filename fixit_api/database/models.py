"""Database models for the FixIT API"""

import json
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    employee_id: Mapped[str | None] = mapped_column(String, unique=True)
    department: Mapped[str | None] = mapped_column(String)
    position: Mapped[str | None] = mapped_column(String)
    phone: Mapped[str | None] = mapped_column(String)
    location: Mapped[str | None] = mapped_column(String)
    bio: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String, nullable=False, default="user")

    # Contribution counters
    issues_resolved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    skills: Mapped[list["UserSkill"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="UserSkill.user_id",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserSkill(Base):
    __tablename__ = "user_skills"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True
    )
    name: Mapped[str] = mapped_column(String, primary_key=True)  # lowercased
    proficiency: Mapped[str] = mapped_column(
        String, nullable=False, default="intermediate"
    )  # beginner|intermediate|advanced|expert
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.user_id")
    )

    user: Mapped[User] = relationship(back_populates="skills", foreign_keys=[user_id])


class Issue(Base):
    __tablename__ = "issues"

    issue_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String, nullable=False, default="open")
    required_skills: Mapped[str] = mapped_column(
        Text, nullable=False, default='["general"]'
    )  # JSON array of skill names
    tags: Mapped[str | None] = mapped_column(Text)  # JSON array of tags

    # Location inside the office
    building: Mapped[str | None] = mapped_column(String)
    floor: Mapped[str | None] = mapped_column(String)
    room: Mapped[str | None] = mapped_column(String)
    estimated_time: Mapped[str | None] = mapped_column(String)

    owner_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.user_id"), nullable=False
    )
    assignee_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.user_id")
    )

    # Resolution record, present iff status is resolved or closed
    solved_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.user_id")
    )
    solution: Mapped[str | None] = mapped_column(Text)
    points_awarded: Mapped[int | None] = mapped_column(Integer)
    solved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    owner: Mapped[User] = relationship(foreign_keys=[owner_id], lazy="selectin")
    assignee: Mapped[User | None] = relationship(
        foreign_keys=[assignee_id], lazy="selectin"
    )
    solved_by: Mapped[User | None] = relationship(
        foreign_keys=[solved_by_id], lazy="selectin"
    )
    comments: Mapped[list["IssueComment"]] = relationship(
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueComment.created_at",
        lazy="selectin",
    )

    @property
    def required_skill_list(self) -> list[str]:
        return _load_json_list(self.required_skills)

    @property
    def tag_list(self) -> list[str]:
        return _load_json_list(self.tags)


class IssueComment(Base):
    __tablename__ = "issue_comments"

    comment_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    issue_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("issues.issue_id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.user_id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    issue: Mapped[Issue] = relationship(back_populates="comments")
    author: Mapped[User] = relationship(lazy="selectin")


def _load_json_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(item) for item in value] if isinstance(value, list) else []


__all__ = [
    "Base",
    "User",
    "UserSkill",
    "Issue",
    "IssueComment",
]
