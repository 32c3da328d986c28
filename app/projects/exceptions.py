"""
Project and milestone exceptions.

Exception Hierarchy:
    NotFoundError
    ├── ProjectNotFoundError
    └── MilestoneNotFoundError
    PermissionDeniedError
    ├── NotProjectMemberError - Actor is not a member of the project
    └── NotProjectOwnerError - Actor is not the project owner
    ConflictError
    ├── MilestoneAlreadyProcessedError - Milestone already completed/approved/closed
    └── MilestoneNotFundedError - Approve without an active escrow
"""

from __future__ import annotations

from core.exceptions import ConflictError, NotFoundError, PermissionDeniedError


class ProjectNotFoundError(NotFoundError):
    default_error_code: str = "PROJECT_NOT_FOUND"


class MilestoneNotFoundError(NotFoundError):
    default_error_code: str = "MILESTONE_NOT_FOUND"


class NotProjectMemberError(PermissionDeniedError):
    default_error_code: str = "NOT_PROJECT_MEMBER"


class NotProjectOwnerError(PermissionDeniedError):
    default_error_code: str = "NOT_PROJECT_OWNER"


class MilestoneAlreadyProcessedError(ConflictError):
    """
    Raised when an action repeats on a milestone that already moved past it.

    Example:
        Completing a milestone twice fails on the second call and leaves
        the status untouched.
    """

    default_error_code: str = "MILESTONE_ALREADY_PROCESSED"


class MilestoneNotFundedError(ConflictError):
    default_error_code: str = "MILESTONE_NOT_FUNDED"


__all__ = [
    "MilestoneAlreadyProcessedError",
    "MilestoneNotFoundError",
    "MilestoneNotFundedError",
    "NotProjectMemberError",
    "NotProjectOwnerError",
    "ProjectNotFoundError",
]
