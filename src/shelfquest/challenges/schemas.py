"""Pydantic schemas and enums for reading challenges."""

import calendar
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..activity.window import DateWindow


class ChallengeType(str, Enum):
    """How progress toward a challenge is measured."""

    BOOK_COUNT = "BOOK_COUNT"
    PAGE_COUNT = "PAGE_COUNT"
    LONG_BOOKS = "LONG_BOOKS"
    GENRE_DIVERSITY = "GENRE_DIVERSITY"
    AUTHOR_DIVERSITY = "AUTHOR_DIVERSITY"
    REVIEW_COUNT = "REVIEW_COUNT"
    QUOTE_COUNT = "QUOTE_COUNT"
    READING_STREAK = "READING_STREAK"
    COLLECTION_SIZE = "COLLECTION_SIZE"


class ChallengePeriod(str, Enum):
    """Rolling period a challenge is measured over."""

    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    ANYTIME = "ANYTIME"


class EnrollmentState(str, Enum):
    """Lifecycle state of a user's enrollment in a challenge."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Transition(str, Enum):
    """User-driven lifecycle transitions."""

    PAUSE = "pause"
    RESUME = "resume"
    ARCHIVE = "archive"
    RELAUNCH = "relaunch"


# Allowed source states per transition, and where each one lands.
TRANSITIONS: dict[Transition, tuple[frozenset, EnrollmentState]] = {
    Transition.PAUSE: (
        frozenset({EnrollmentState.ACTIVE}),
        EnrollmentState.PAUSED,
    ),
    Transition.RESUME: (
        frozenset({EnrollmentState.PAUSED}),
        EnrollmentState.ACTIVE,
    ),
    Transition.ARCHIVE: (
        frozenset({EnrollmentState.ACTIVE, EnrollmentState.PAUSED, EnrollmentState.COMPLETED}),
        EnrollmentState.ARCHIVED,
    ),
    Transition.RELAUNCH: (
        frozenset({EnrollmentState.COMPLETED, EnrollmentState.ARCHIVED}),
        EnrollmentState.ACTIVE,
    ),
}


def months_before(day: date, months: int) -> date:
    """Same day-of-month `months` calendar months earlier, clamped to month end."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def window_for_period(period: ChallengePeriod, today: Optional[date] = None) -> DateWindow:
    """Derive the rolling window for a period relative to today.

    WEEKLY covers the last 7 days, MONTHLY and QUARTERLY go back one and
    three calendar months, YEARLY starts on January 1st and ANYTIME is
    unbounded.
    """
    today = today or date.today()
    period = ChallengePeriod(period)

    if period == ChallengePeriod.WEEKLY:
        return DateWindow(start=today - timedelta(days=7))
    if period == ChallengePeriod.MONTHLY:
        return DateWindow(start=months_before(today, 1))
    if period == ChallengePeriod.QUARTERLY:
        return DateWindow(start=months_before(today, 3))
    if period == ChallengePeriod.YEARLY:
        return DateWindow(start=date(today.year, 1, 1))
    return DateWindow()


# ============================================================================
# Template Schemas
# ============================================================================


class TemplateBase(BaseModel):
    """Base challenge template fields."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    challenge_type: ChallengeType = ChallengeType.BOOK_COUNT
    target: int = Field(..., ge=1, description="Target number to reach")
    period: ChallengePeriod = ChallengePeriod.ANYTIME
    icon: Optional[str] = Field(None, max_length=50)
    genre_filter: Optional[str] = Field(
        None, max_length=100, description="Only count books whose genre contains this"
    )

    @field_validator("genre_filter", mode="before")
    @classmethod
    def blank_filter_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class TemplateCreate(TemplateBase):
    """Schema for creating a custom challenge template."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, v, info):
        """Validate end date is after start date."""
        start = info.data.get("start_date")
        if v and start and v < start:
            raise ValueError("end_date must be after start_date")
        return v


class PredefinedTemplate(TemplateBase):
    """Canonical definition of an official challenge."""


class EnrollmentSummary(BaseModel):
    """Summary of an enrollment for listing."""

    id: str
    title: str
    challenge_type: ChallengeType
    period: ChallengePeriod
    state: EnrollmentState
    progress: int
    manual_progress: int
    target: int
    percent: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    completed_at: Optional[str] = None


class ReconcileReport(BaseModel):
    """Outcome of syncing the predefined catalog."""

    created: list[str] = Field(default_factory=list)
    retired: list[str] = Field(default_factory=list)
    purged_enrollments: int = 0
    failed: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.retired or self.purged_enrollments)


def progress_percent(progress: int, target: int) -> float:
    """Progress as a percentage of target, clamped to 0-100."""
    if target <= 0:
        return 0.0
    return max(0.0, min(100.0, (progress / target) * 100))
