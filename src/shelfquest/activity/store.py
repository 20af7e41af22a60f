"""Read-only queries over reading activity.

Everything challenge progress and badges are computed from goes through
ActivityStore. Each query accepts an optional session so batch callers
can run several of them in a single round trip.
"""

from datetime import date
from typing import Callable, Optional, TypeVar

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from ..db.models import Book, Collection, CollectionBook, Quote, ReadingActivity
from ..db.schemas import BookStatus
from ..db.sqlite import Database, get_db
from .window import DateWindow

T = TypeVar("T")

LONG_BOOK_PAGES = 500
FAST_READ_DAYS = 3


class ActivityStore:
    """Query contract over books, quotes, collections and activities."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize activity store.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    def _read(self, query: Callable[[Session], T], session: Optional[Session]) -> T:
        if session is not None:
            return query(session)
        with self.db.get_session() as s:
            return query(s)

    @staticmethod
    def _completed(stmt: Select, user_id: str, window: Optional[DateWindow] = None) -> Select:
        stmt = stmt.where(
            Book.user_id == user_id,
            Book.status == BookStatus.COMPLETED.value,
        )
        if window is not None:
            if window.start:
                stmt = stmt.where(Book.date_finished >= window.start_iso)
            if window.end:
                stmt = stmt.where(Book.date_finished <= window.end_iso)
        return stmt

    # -------------------------------------------------------------------------
    # Windowed book queries
    # -------------------------------------------------------------------------

    def count_completed_books(
        self,
        user_id: str,
        window: Optional[DateWindow] = None,
        genre: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Count completed books, optionally in a window and genre.

        Args:
            user_id: Owner of the books
            window: Only books finished inside this window
            genre: Only books whose genre contains this token (case-insensitive)
        """

        def _count(s: Session) -> int:
            stmt = self._completed(select(func.count(Book.id)), user_id, window)
            if genre:
                stmt = stmt.where(func.lower(Book.genre).contains(genre.lower()))
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    def sum_pages(
        self,
        user_id: str,
        window: Optional[DateWindow] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Total pages of completed books. Missing page counts count as 0."""

        def _sum(s: Session) -> int:
            stmt = self._completed(
                select(func.coalesce(func.sum(Book.page_count), 0)), user_id, window
            )
            return int(s.execute(stmt).scalar() or 0)

        return self._read(_sum, session)

    def count_long_books(
        self,
        user_id: str,
        window: Optional[DateWindow] = None,
        min_pages: int = LONG_BOOK_PAGES,
        session: Optional[Session] = None,
    ) -> int:
        """Count completed books with at least `min_pages` pages."""

        def _count(s: Session) -> int:
            stmt = self._completed(select(func.count(Book.id)), user_id, window)
            stmt = stmt.where(Book.page_count >= min_pages)
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    def count_distinct_genres(
        self,
        user_id: str,
        window: Optional[DateWindow] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Count distinct non-null genres among completed books."""

        def _count(s: Session) -> int:
            stmt = self._completed(select(func.count(distinct(Book.genre))), user_id, window)
            stmt = stmt.where(Book.genre.is_not(None))
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    # -------------------------------------------------------------------------
    # Global queries
    # -------------------------------------------------------------------------

    def count_distinct_authors(self, user_id: str, session: Optional[Session] = None) -> int:
        """Count distinct authors among all completed books."""

        def _count(s: Session) -> int:
            stmt = self._completed(select(func.count(distinct(Book.author))), user_id)
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    def count_reviews(self, user_id: str, session: Optional[Session] = None) -> int:
        """Count completed books with a non-empty review comment."""

        def _count(s: Session) -> int:
            stmt = self._completed(select(func.count(Book.id)), user_id)
            stmt = stmt.where(Book.comments.is_not(None), func.trim(Book.comments) != "")
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    def count_quotes(self, user_id: str, session: Optional[Session] = None) -> int:
        """Count all saved quotes."""

        def _count(s: Session) -> int:
            stmt = select(func.count(Quote.id)).where(Quote.user_id == user_id)
            return s.execute(stmt).scalar() or 0

        return self._read(_count, session)

    def largest_collection_size(self, user_id: str, session: Optional[Session] = None) -> int:
        """Book count of the user's biggest collection (0 without collections)."""

        def _max(s: Session) -> int:
            stmt = (
                select(func.count(CollectionBook.id))
                .select_from(Collection)
                .join(CollectionBook, CollectionBook.collection_id == Collection.id)
                .where(Collection.user_id == user_id)
                .group_by(Collection.id)
            )
            sizes = s.execute(stmt).scalars().all()
            return max(sizes, default=0)

        return self._read(_max, session)

    def max_books_by_one_author(self, user_id: str, session: Optional[Session] = None) -> int:
        """Highest number of completed books by a single author."""

        def _max(s: Session) -> int:
            stmt = self._completed(
                select(func.count(Book.id)).group_by(Book.author), user_id
            )
            counts = s.execute(stmt).scalars().all()
            return max(counts, default=0)

        return self._read(_max, session)

    def has_fast_read(
        self,
        user_id: str,
        max_days: int = FAST_READ_DAYS,
        session: Optional[Session] = None,
    ) -> bool:
        """Check for a completed book finished within `max_days` of starting it."""

        def _check(s: Session) -> bool:
            stmt = self._completed(
                select(Book.date_started, Book.date_finished), user_id
            ).where(Book.date_started.is_not(None), Book.date_finished.is_not(None))

            for started, finished in s.execute(stmt).all():
                days = (date.fromisoformat(finished) - date.fromisoformat(started)).days
                if 0 <= days <= max_days:
                    return True
            return False

        return self._read(_check, session)

    def activity_dates(self, user_id: str, session: Optional[Session] = None) -> list[str]:
        """Distinct days with any reading activity, most recent first."""

        def _dates(s: Session) -> list[str]:
            stmt = (
                select(ReadingActivity.activity_date)
                .where(ReadingActivity.user_id == user_id)
                .distinct()
                .order_by(ReadingActivity.activity_date.desc())
            )
            return list(s.execute(stmt).scalars().all())

        return self._read(_dates, session)
