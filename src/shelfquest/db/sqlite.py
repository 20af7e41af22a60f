"""SQLite database operations.

Handles database connection, session management, and the thin write
operations that produce reading activity (books, quotes, collections).
"""

import logging
import os
from contextlib import contextmanager
from datetime import date, timedelta
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, Book, Collection, CollectionBook, Quote, ReadingActivity
from .schemas import (
    ActivityType,
    BookCreate,
    BookStatus,
    BookUpdate,
    CollectionCreate,
    QuoteCreate,
)

logger = logging.getLogger(__name__)


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     SHELFQUEST_DB_PATH env var or default location.
        """
        if db_path is None:
            db_path = os.environ.get(
                "SHELFQUEST_DB_PATH",
                str(Path.home() / ".shelfquest" / "shelfquest.db"),
            )

        self.db_path = Path(db_path)
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # This ensures all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )
        # Detached results stay readable after the session commits
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import challenge models to register them with Base
        from ..challenges.models import ChallengeEnrollment, ChallengeTemplate  # noqa: F401
        # Import badge models to register them with Base
        from ..badges.models import Badge  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Book Operations
    # ========================================================================

    def create_book(self, user_id: str, book: BookCreate) -> Book:
        """Create a new book record and log its start/finish activity."""
        with self.get_session() as s:
            db_book = Book(
                user_id=user_id,
                title=book.title,
                author=book.author,
                genre=book.genre,
                status=book.status.value,
                page_count=book.page_count,
                rating=book.rating,
                date_started=book.date_started.isoformat() if book.date_started else None,
                date_finished=book.date_finished.isoformat() if book.date_finished else None,
                comments=book.comments,
            )
            s.add(db_book)
            s.flush()

            self._record_date_activities(s, db_book)

            s.expunge(db_book)
            return db_book

    def get_book(self, book_id: str) -> Optional[Book]:
        """Get a book by ID."""
        with self.get_session() as s:
            book = s.get(Book, book_id)
            if book:
                s.expunge(book)
            return book

    def get_books(self, user_id: str, status: Optional[BookStatus] = None) -> list[Book]:
        """Get a user's books, optionally filtered by status."""
        with self.get_session() as s:
            stmt = select(Book).where(Book.user_id == user_id)
            if status:
                stmt = stmt.where(Book.status == status.value)
            books = list(s.execute(stmt.order_by(Book.title)).scalars().all())
            for book in books:
                s.expunge(book)
            return books

    def update_book(self, book_id: str, update: BookUpdate) -> Optional[Book]:
        """Update a book record.

        Changing the start or finish date records the matching activity so
        streaks see it.
        """
        with self.get_session() as s:
            book = s.get(Book, book_id)
            if not book:
                return None

            update_data = update.model_dump(exclude_unset=True)
            for field, value in update_data.items():
                if field in ("date_started", "date_finished"):
                    setattr(book, field, value.isoformat() if value else None)
                elif field == "status" and value:
                    setattr(book, field, value.value)
                else:
                    setattr(book, field, value)

            s.flush()
            self._record_date_activities(s, book)

            s.expunge(book)
            return book

    def finish_book(
        self,
        book_id: str,
        finished_on: Optional[date] = None,
        comments: Optional[str] = None,
    ) -> Optional[Book]:
        """Mark a book as completed."""
        data = {
            "status": BookStatus.COMPLETED,
            "date_finished": finished_on or date.today(),
        }
        if comments is not None:
            data["comments"] = comments
        return self.update_book(book_id, BookUpdate(**data))

    # ========================================================================
    # Activity Operations
    # ========================================================================

    def log_activity(
        self,
        user_id: str,
        book_id: str,
        activity_date: Optional[date] = None,
        activity_type: ActivityType = ActivityType.READING,
    ) -> bool:
        """Record a reading activity.

        Returns:
            True if a new row was written, False if it already existed
        """
        activity_date = activity_date or date.today()
        with self.get_session() as s:
            return self._add_activity(
                s, user_id, book_id, activity_date.isoformat(), activity_type
            )

    def populate_activity_from_books(self, user_id: str) -> int:
        """Backfill activities from book start/finish dates.

        Besides the start and finish days, books read over more than three
        days get intermediate `reading` days spaced max(3, span // 5) apart.
        Rows that already exist are skipped.

        Returns:
            Number of activities created
        """
        created = 0
        with self.get_session() as s:
            stmt = select(Book).where(
                Book.user_id == user_id,
                (Book.date_started.is_not(None)) | (Book.date_finished.is_not(None)),
            )
            for book in s.execute(stmt).scalars().all():
                planned: list[tuple[str, ActivityType]] = []
                if book.date_started:
                    planned.append((book.date_started, ActivityType.STARTED))
                if book.date_finished:
                    planned.append((book.date_finished, ActivityType.FINISHED))

                if book.date_started and book.date_finished:
                    start = date.fromisoformat(book.date_started)
                    end = date.fromisoformat(book.date_finished)
                    span = (end - start).days
                    if span > 3:
                        interval = max(3, span // 5)
                        day = start + timedelta(days=interval)
                        while day < end:
                            planned.append((day.isoformat(), ActivityType.READING))
                            day += timedelta(days=interval)

                for activity_date, activity_type in planned:
                    if self._add_activity(s, user_id, book.id, activity_date, activity_type):
                        created += 1

        logger.info("Backfilled %d reading activities for user %s", created, user_id)
        return created

    def _record_date_activities(self, session: Session, book: Book) -> None:
        if book.date_started:
            self._add_activity(
                session, book.user_id, book.id, book.date_started, ActivityType.STARTED
            )
        if book.date_finished and book.status == BookStatus.COMPLETED.value:
            self._add_activity(
                session, book.user_id, book.id, book.date_finished, ActivityType.FINISHED
            )

    def _add_activity(
        self,
        session: Session,
        user_id: str,
        book_id: str,
        activity_date: str,
        activity_type: ActivityType,
    ) -> bool:
        existing = session.execute(
            select(ReadingActivity.id).where(
                ReadingActivity.book_id == book_id,
                ReadingActivity.activity_date == activity_date,
                ReadingActivity.activity_type == activity_type.value,
            )
        ).first()
        if existing:
            return False

        try:
            with session.begin_nested():
                session.add(
                    ReadingActivity(
                        user_id=user_id,
                        book_id=book_id,
                        activity_date=activity_date,
                        activity_type=activity_type.value,
                    )
                )
        except IntegrityError:
            logger.debug("Activity %s for book %s on %s already recorded",
                         activity_type.value, book_id, activity_date)
            return False
        return True

    # ========================================================================
    # Quote and Collection Operations
    # ========================================================================

    def add_quote(self, user_id: str, quote: QuoteCreate) -> Quote:
        """Save a quote."""
        with self.get_session() as s:
            if not s.get(Book, quote.book_id):
                raise ValueError("Book not found")

            db_quote = Quote(
                user_id=user_id,
                book_id=quote.book_id,
                text=quote.text,
                page_number=quote.page_number,
            )
            s.add(db_quote)
            s.flush()
            s.expunge(db_quote)
            return db_quote

    def create_collection(self, user_id: str, data: CollectionCreate) -> Collection:
        """Create a collection."""
        with self.get_session() as s:
            collection = Collection(
                user_id=user_id, name=data.name, description=data.description
            )
            s.add(collection)
            s.flush()
            s.expunge(collection)
            return collection

    def add_book_to_collection(self, collection_id: str, book_id: str) -> bool:
        """Add a book to a collection.

        Returns:
            True if added, False if it was already a member
        """
        with self.get_session() as s:
            if not s.get(Collection, collection_id):
                raise ValueError("Collection not found")
            if not s.get(Book, book_id):
                raise ValueError("Book not found")

            existing = s.execute(
                select(CollectionBook).where(
                    CollectionBook.collection_id == collection_id,
                    CollectionBook.book_id == book_id,
                )
            ).scalar_one_or_none()
            if existing:
                return False

            s.add(CollectionBook(collection_id=collection_id, book_id=book_id))
            return True


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        _db = Database(db_path)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    _db = None
