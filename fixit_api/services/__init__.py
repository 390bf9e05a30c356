"""Services package for the FixIT API

Only the database-free modules are re-exported here; the client imports
them too. Storage and realtime live in their own modules.
"""

from .lifecycle import (
    IssueLifecycleError,
    IssueLifecycleGuard,
    IssuePermissionError,
    IssueStateError,
    IssueStatus,
)
from .skill_matcher import HelperCandidate, rank_helpers

__all__ = [
    "HelperCandidate",
    "IssueLifecycleError",
    "IssueLifecycleGuard",
    "IssuePermissionError",
    "IssueStateError",
    "IssueStatus",
    "rank_helpers",
]
