"""Reading challenges module.

Provides functionality for:
- Predefined and custom challenge templates
- Computing progress from reading activity over a date window
- Enrollment lifecycle: join, pause, resume, archive, relaunch
- Syncing the predefined catalog
"""

from .catalog import PREDEFINED_CHALLENGES, CatalogReconciler
from .manager import ChallengeManager
from .models import ChallengeEnrollment, ChallengeTemplate
from .progress import ProgressCalculator, window_for_enrollment
from .results import FailureReason, OperationResult
from .schemas import (
    ChallengePeriod,
    ChallengeType,
    EnrollmentState,
    EnrollmentSummary,
    ReconcileReport,
    TemplateCreate,
    Transition,
    window_for_period,
)

__all__ = [
    "PREDEFINED_CHALLENGES",
    "CatalogReconciler",
    "ChallengeManager",
    "ChallengeEnrollment",
    "ChallengeTemplate",
    "ProgressCalculator",
    "window_for_enrollment",
    "FailureReason",
    "OperationResult",
    "ChallengePeriod",
    "ChallengeType",
    "EnrollmentState",
    "EnrollmentSummary",
    "ReconcileReport",
    "TemplateCreate",
    "Transition",
    "window_for_period",
]
