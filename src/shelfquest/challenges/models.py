"""SQLAlchemy models for reading challenges.

Tables:
- challenge_templates: Reusable challenge definitions (predefined or custom)
- challenge_enrollments: A user's pursuit of a template
"""

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, generate_uuid, utc_now_iso
from .schemas import ChallengePeriod, ChallengeType, EnrollmentState, progress_percent

# Title hints older templates relied on before genre_filter existed
LEGACY_GENRE_HINTS = ("Roman", "BD")


class ChallengeTemplate(Base):
    """Challenge template - what to achieve and over which period."""

    __tablename__ = "challenge_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)

    challenge_type: Mapped[str] = mapped_column(
        String(30), default=ChallengeType.BOOK_COUNT.value
    )
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[str] = mapped_column(String(20), default=ChallengePeriod.ANYTIME.value)
    icon: Mapped[Optional[str]] = mapped_column(String(50))

    # Only books whose genre contains this token count (BOOK_COUNT)
    genre_filter: Mapped[Optional[str]] = mapped_column(String(100))

    is_predefined: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # Owner of a custom template, None for the official catalog
    created_by: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    enrollments: Mapped[list["ChallengeEnrollment"]] = relationship(
        "ChallengeEnrollment", back_populates="template", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ChallengeTemplate(id={self.id}, title='{self.title}', type={self.challenge_type})>"

    @property
    def effective_genre_filter(self) -> Optional[str]:
        """Genre token to filter on, falling back to hints in the title."""
        if self.genre_filter:
            return self.genre_filter
        for hint in LEGACY_GENRE_HINTS:
            if hint in self.title:
                return hint
        return None


class ChallengeEnrollment(Base):
    """A user's instance of a challenge template."""

    __tablename__ = "challenge_enrollments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("challenge_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Cached computed + manual progress
    progress: Mapped[int] = mapped_column(Integer, default=0)
    manual_progress: Mapped[int] = mapped_column(Integer, default=0)

    state: Mapped[str] = mapped_column(
        String(20), default=EnrollmentState.ACTIVE.value, index=True
    )
    completed_at: Mapped[Optional[str]] = mapped_column(String(26))
    started_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    # Window the enrollment counts from; custom_window means the user chose it
    start_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    end_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    custom_window: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[str] = mapped_column(
        String(26), default=utc_now_iso, onupdate=utc_now_iso
    )

    template: Mapped["ChallengeTemplate"] = relationship(
        "ChallengeTemplate", back_populates="enrollments", lazy="joined"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "template_id", name="uq_enrollment_user_template"),
    )

    def __repr__(self) -> str:
        return f"<ChallengeEnrollment(id={self.id}, state={self.state}, progress={self.progress})>"

    @property
    def is_completed(self) -> bool:
        return self.state == EnrollmentState.COMPLETED.value

    @property
    def is_paused(self) -> bool:
        return self.state == EnrollmentState.PAUSED.value

    @property
    def is_archived(self) -> bool:
        return self.state == EnrollmentState.ARCHIVED.value

    @property
    def start(self) -> Optional[date]:
        return date.fromisoformat(self.start_date) if self.start_date else None

    @property
    def end(self) -> Optional[date]:
        return date.fromisoformat(self.end_date) if self.end_date else None

    @property
    def progress_percent(self) -> float:
        """Calculate progress percentage."""
        return progress_percent(self.progress, self.template.target if self.template else 0)

    @property
    def remaining(self) -> int:
        """Calculate remaining items to reach target."""
        return max(0, self.template.target - self.progress)
