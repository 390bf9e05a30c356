"""Issue lifecycle guard: status transitions and ownership rules"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class IssueStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.CLOSED})

VALID_TRANSITIONS: dict[IssueStatus, frozenset[IssueStatus]] = {
    IssueStatus.OPEN: frozenset({IssueStatus.ASSIGNED, IssueStatus.RESOLVED}),
    # assigned -> assigned is a reassignment to another helper
    IssueStatus.ASSIGNED: frozenset(
        {IssueStatus.ASSIGNED, IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED}
    ),
    IssueStatus.IN_PROGRESS: frozenset({IssueStatus.RESOLVED}),
    IssueStatus.RESOLVED: frozenset({IssueStatus.CLOSED}),
    IssueStatus.CLOSED: frozenset(),
}


class IssueLifecycleError(Exception):
    """Base class for rejected issue mutations"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IssueStateError(IssueLifecycleError):
    """Raised when the issue status does not allow the requested change"""

    def __init__(self, current_status: str, target_status: str | None, message: str):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status


class IssuePermissionError(IssueLifecycleError):
    """Raised when the acting user may not perform the requested change"""

    def __init__(self, action: str, user_id: Any, message: str):
        super().__init__(message)
        self.action = action
        self.user_id = user_id


def _as_status(status: "str | IssueStatus") -> IssueStatus | None:
    try:
        return IssueStatus(status)
    except ValueError:
        return None


def can_transition(current: "str | IssueStatus", target: "str | IssueStatus") -> bool:
    current_status = _as_status(current)
    target_status = _as_status(target)
    if current_status is None or target_status is None:
        return False
    return target_status in VALID_TRANSITIONS[current_status]


def validate_transition(current: "str | IssueStatus", target: "str | IssueStatus") -> None:
    """Raise IssueStateError if current -> target is not a valid transition"""
    if not can_transition(current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        raise IssueStateError(
            current_status=current_value,
            target_status=target_value,
            message=f"Cannot move issue from '{current_value}' to '{target_value}'",
        )


def is_terminal(status: "str | IssueStatus") -> bool:
    return _as_status(status) in TERMINAL_STATUSES


@dataclass(frozen=True)
class IssueLifecycleGuard:
    """
    Ownership and status checks for one issue snapshot.

    Every ``ensure_*`` method raises instead of returning False, so callers
    can never mistake a rejected mutation for a silent no-op. The matching
    ``can_*`` helpers are for UI-style gating.
    """

    owner_id: str
    status: IssueStatus
    assignee_id: str | None = None

    @classmethod
    def for_issue(cls, issue: Any) -> "IssueLifecycleGuard":
        """Build a guard from an ORM issue or an API issue dict"""
        if isinstance(issue, dict):
            owner = issue.get("owner") or issue.get("postedBy") or {}
            assignee = issue.get("assignee") or issue.get("assignedTo")
            owner_id = owner.get("id") if isinstance(owner, dict) else owner
            assignee_id = assignee.get("id") if isinstance(assignee, dict) else assignee
            status = issue.get("status", IssueStatus.OPEN.value)
        else:
            owner_id = issue.owner_id
            assignee_id = issue.assignee_id
            status = issue.status

        parsed = _as_status(status)
        if parsed is None:
            raise IssueStateError(
                current_status=str(status),
                target_status=None,
                message=f"Unknown issue status '{status}'",
            )
        return cls(
            owner_id=str(owner_id),
            status=parsed,
            assignee_id=str(assignee_id) if assignee_id is not None else None,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_owner(self, user_id: Any) -> bool:
        return user_id is not None and str(user_id) == self.owner_id

    def can_edit(self, user_id: Any) -> bool:
        return self.is_owner(user_id) and not self.is_terminal

    def can_delete(self, user_id: Any) -> bool:
        return self.can_edit(user_id)

    def can_suggest_helpers(self) -> bool:
        return not self.is_terminal

    def _require_owner(self, action: str, user_id: Any) -> None:
        if not self.is_owner(user_id):
            raise IssuePermissionError(
                action=action,
                user_id=user_id,
                message=f"Only the issue owner can {action} this issue",
            )

    def _require_not_terminal(self, action: str) -> None:
        if self.is_terminal:
            raise IssueStateError(
                current_status=self.status.value,
                target_status=None,
                message=f"Cannot {action} an issue that is {self.status.value}",
            )

    def ensure_can_edit(self, user_id: Any) -> None:
        self._require_owner("edit", user_id)
        self._require_not_terminal("edit")

    def ensure_can_delete(self, user_id: Any) -> None:
        self._require_owner("delete", user_id)
        self._require_not_terminal("delete")

    def ensure_can_suggest_helpers(self) -> None:
        self._require_not_terminal("request helpers for")

    def ensure_can_assign(self, user_id: Any, assignee_id: Any) -> None:
        self._require_owner("assign", user_id)
        self._require_not_terminal("assign")
        validate_transition(self.status, IssueStatus.ASSIGNED)
        if self.is_owner(assignee_id):
            raise IssueStateError(
                current_status=self.status.value,
                target_status=IssueStatus.ASSIGNED.value,
                message="An issue cannot be assigned to its owner",
            )

    def ensure_can_start(self, user_id: Any) -> None:
        if self.assignee_id is None or str(user_id) != self.assignee_id:
            raise IssuePermissionError(
                action="start",
                user_id=user_id,
                message="Only the assignee can start work on this issue",
            )
        validate_transition(self.status, IssueStatus.IN_PROGRESS)

    def ensure_can_resolve(self, user_id: Any) -> None:
        self._require_owner("resolve", user_id)
        self._require_not_terminal("resolve")
        validate_transition(self.status, IssueStatus.RESOLVED)

    def ensure_can_close(self, user_id: Any = None, is_admin: bool = False) -> None:
        """Owner or admin may close; user_id None means the scheduler"""
        if user_id is not None and not is_admin:
            self._require_owner("close", user_id)
        validate_transition(self.status, IssueStatus.CLOSED)

    def points_for(self, solver_id: Any, requested_points: int) -> int:
        """Points awarded to the solver; owners solving their own issue earn none"""
        if self.is_owner(solver_id):
            return 0
        return max(0, requested_points)
