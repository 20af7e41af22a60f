"""Pydantic schemas for badge evaluation."""

from typing import Optional

from pydantic import BaseModel

from .rules import BadgeCategory


class BadgeFacts(BaseModel):
    """Aggregate facts about a user that badge rules are checked against."""

    completed_books: int = 0
    total_pages: int = 0
    review_count: int = 0
    distinct_genres: int = 0
    max_books_by_author: int = 0
    quote_count: int = 0
    current_streak: int = 0
    completed_challenges: int = 0
    predefined_templates: int = 0
    completed_predefined: int = 0
    custom_templates: int = 0
    has_long_book: bool = False
    has_fast_read: bool = False


class BadgeBoardEntry(BaseModel):
    """One rule on the badge board, locked or unlocked."""

    key: str
    name: str
    description: str
    icon: str
    category: BadgeCategory
    target: Optional[int] = None
    unlocked: bool = False
    unlocked_at: Optional[str] = None
