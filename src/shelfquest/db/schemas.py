"""Pydantic schemas for reading activity data.

These schemas describe the facts challenge progress and badges are
computed from: books, quotes and collections.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class BookStatus(str, Enum):
    """Reading status of a book."""

    READING = "reading"
    COMPLETED = "completed"
    WISHLIST = "wishlist"  # Want to read
    DNF = "dnf"  # Did not finish


class ActivityType(str, Enum):
    """Kind of reading activity recorded for a day."""

    STARTED = "started"
    READING = "reading"
    FINISHED = "finished"


# ============================================================================
# Book Schemas
# ============================================================================


class BookBase(BaseModel):
    """Base book fields common to create/update operations."""

    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Primary author")
    genre: Optional[str] = Field(None, max_length=100)
    status: BookStatus = Field(default=BookStatus.WISHLIST)
    page_count: Optional[int] = Field(None, ge=0)
    rating: Optional[int] = Field(None, ge=1, le=5, description="Rating 1-5")
    date_started: Optional[date] = None
    date_finished: Optional[date] = None
    comments: Optional[str] = Field(None, description="Review text")

    @field_validator("genre", "comments", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        """Treat whitespace-only strings as missing."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class BookCreate(BookBase):
    """Schema for creating a book."""

    @field_validator("date_finished")
    @classmethod
    def finished_after_started(cls, v, info):
        """Validate finish date is not before start date."""
        started = info.data.get("date_started")
        if v and started and v < started:
            raise ValueError("date_finished must not be before date_started")
        return v


class BookUpdate(BaseModel):
    """Schema for updating a book. All fields optional."""

    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    genre: Optional[str] = None
    status: Optional[BookStatus] = None
    page_count: Optional[int] = Field(None, ge=0)
    rating: Optional[int] = Field(None, ge=1, le=5)
    date_started: Optional[date] = None
    date_finished: Optional[date] = None
    comments: Optional[str] = None


# ============================================================================
# Quote and Collection Schemas
# ============================================================================


class QuoteCreate(BaseModel):
    """Schema for saving a quote."""

    book_id: str
    text: str = Field(..., min_length=1)
    page_number: Optional[int] = Field(None, ge=0)


class CollectionCreate(BaseModel):
    """Schema for creating a collection."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
