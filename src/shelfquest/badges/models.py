"""SQLAlchemy models for unlocked badges.

Tables:
- badges: One row per badge a user has unlocked
"""

from typing import Optional

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db.models import Base, generate_uuid, utc_now_iso


class Badge(Base):
    """Badge model - an achievement unlocked by a user."""

    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Key of the rule that unlocked it
    badge_key: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    category: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    unlocked_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    # A badge is awarded at most once per user
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_badge_user_name"),)

    def __repr__(self) -> str:
        return f"<Badge(user_id={self.user_id}, name='{self.name}', category={self.category})>"
