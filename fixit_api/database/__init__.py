"""Database module for the FixIT API"""

from .models import Base, Issue, IssueComment, User, UserSkill
from .session import AsyncSessionLocal, engine


async def create_tables():
    """Create all tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "User",
    "UserSkill",
    "Issue",
    "IssueComment",
    "AsyncSessionLocal",
    "engine",
    "create_tables",
]
