"""Explicit success/failure results returned by challenge operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import ChallengeEnrollment


class FailureReason(str, Enum):
    """Why an operation was refused."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"
    INVALID_INPUT = "invalid_input"
    STORAGE_ERROR = "storage_error"


@dataclass
class OperationResult:
    """Outcome of a lifecycle operation.

    Callers render `error` to the user; `reason` lets them branch without
    knowing internal causes.
    """

    success: bool
    enrollment: Optional[ChallengeEnrollment] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    # Set by progress refreshes
    changed: bool = False
    newly_completed: bool = False

    @classmethod
    def ok(
        cls,
        enrollment: Optional[ChallengeEnrollment] = None,
        changed: bool = False,
        newly_completed: bool = False,
    ) -> "OperationResult":
        return cls(
            success=True,
            enrollment=enrollment,
            changed=changed,
            newly_completed=newly_completed,
        )

    @classmethod
    def fail(cls, reason: FailureReason, error: str) -> "OperationResult":
        return cls(success=False, reason=reason, error=error)

    @property
    def progress(self) -> Optional[int]:
        return self.enrollment.progress if self.enrollment else None

    @property
    def is_completed(self) -> bool:
        return bool(self.enrollment and self.enrollment.is_completed)

    def __bool__(self) -> bool:
        return self.success
