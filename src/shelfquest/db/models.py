"""SQLAlchemy ORM models for the reading activity store.

Tables:
- books: Book records with reading status and dates
- reading_activities: One row per book/day/activity kind, feeds streaks
- quotes: Saved quotes
- collections: User-defined book collections
- collection_books: Collection membership
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .schemas import ActivityType, BookStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Book(Base):
    """Book model - the core reading fact."""

    __tablename__ = "books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    genre: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=BookStatus.WISHLIST.value, index=True
    )
    page_count: Mapped[Optional[int]] = mapped_column(Integer)
    rating: Mapped[Optional[int]] = mapped_column(Integer)

    # Dates
    date_started: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date
    date_finished: Mapped[Optional[str]] = mapped_column(String(10), index=True)

    # Review text
    comments: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(26), default=utc_now_iso, onupdate=utc_now_iso
    )

    # Relationships
    activities: Mapped[list["ReadingActivity"]] = relationship(
        "ReadingActivity", back_populates="book", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', author='{self.author}')>"

    @property
    def is_completed(self) -> bool:
        return self.status == BookStatus.COMPLETED.value


class ReadingActivity(Base):
    """A day on which something happened with a book."""

    __tablename__ = "reading_activities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True
    )
    activity_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(
        String(20), default=ActivityType.READING.value
    )

    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    book: Mapped["Book"] = relationship("Book", back_populates="activities")

    # Same activity can only be recorded once per book and day
    __table_args__ = (
        UniqueConstraint(
            "book_id", "activity_date", "activity_type", name="uq_activity_book_day_type"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ReadingActivity(book_id={self.book_id}, date={self.activity_date}, "
            f"type={self.activity_type})>"
        )


class Quote(Base):
    """Quote model - memorable passages saved by a user."""

    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    page_number: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    book: Mapped["Book"] = relationship("Book")

    def __repr__(self) -> str:
        return f"<Quote(id={self.id}, book_id={self.book_id})>"


class Collection(Base):
    """Collection model - user-defined group of books."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    collection_books: Mapped[list["CollectionBook"]] = relationship(
        "CollectionBook", back_populates="collection", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, name='{self.name}')>"


class CollectionBook(Base):
    """Association table for collection-book membership."""

    __tablename__ = "collection_books"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    collection_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    added_at: Mapped[str] = mapped_column(String(26), default=utc_now_iso)

    collection: Mapped["Collection"] = relationship(
        "Collection", back_populates="collection_books"
    )

    __table_args__ = (
        UniqueConstraint("collection_id", "book_id", name="uq_collection_book"),
    )
