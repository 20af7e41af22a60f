"""Pytest configuration and shared fixtures.

This module provides fixtures for testing shelfquest: a fresh database per
test, a fixed clock, a book factory and CLI helpers.
"""

import os
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from shelfquest.config import reset_config
from shelfquest.db.models import Book
from shelfquest.db.schemas import BookCreate, BookStatus
from shelfquest.db.sqlite import Database, reset_db

# Every engine component takes this as "today" in tests
TODAY = date(2025, 6, 15)
USER = "alice"


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path(tmp_path: Path) -> Path:
    """Temporary database file path."""
    return tmp_path / "shelfquest.db"


@pytest.fixture(scope="function")
def db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a test database instance."""
    # Reset any global state
    reset_db()
    reset_config()

    os.environ["SHELFQUEST_DB_PATH"] = str(temp_db_path)

    database = Database(str(temp_db_path))
    database.create_tables()
    yield database

    # Cleanup
    reset_db()
    reset_config()
    database.engine.dispose()
    if "SHELFQUEST_DB_PATH" in os.environ:
        del os.environ["SHELFQUEST_DB_PATH"]


@pytest.fixture
def today() -> date:
    """The fixed date tests treat as today."""
    return TODAY


@pytest.fixture
def clock() -> Callable[[], date]:
    """Clock returning the fixed test date."""
    return lambda: TODAY


@pytest.fixture
def user_id() -> str:
    return USER


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def add_book(db: Database, user_id: str) -> Callable[..., Book]:
    """Factory creating a completed book finished `days_ago` days before TODAY."""

    def _add(
        title: str = "Book",
        author: str = "Author",
        pages: Optional[int] = 300,
        genre: Optional[str] = None,
        days_ago: int = 0,
        read_in_days: Optional[int] = None,
        comments: Optional[str] = None,
        status: BookStatus = BookStatus.COMPLETED,
        owner: Optional[str] = None,
    ) -> Book:
        finished = TODAY - timedelta(days=days_ago)
        started = finished - timedelta(days=read_in_days) if read_in_days is not None else None
        return db.create_book(
            owner or user_id,
            BookCreate(
                title=title,
                author=author,
                genre=genre,
                page_count=pages,
                status=status,
                date_started=started,
                date_finished=finished if status == BookStatus.COMPLETED else None,
                comments=comments,
            ),
        )

    return _add


@pytest.fixture
def multiple_books(add_book) -> list[Book]:
    """A small, varied reading history."""
    return [
        add_book("Le Rouge et le Noir", "Stendhal", 500, "Roman", days_ago=2, read_in_days=10),
        add_book("Astérix le Gaulois", "Goscinny", 48, "BD", days_ago=5, read_in_days=1),
        add_book("Sapiens", "Harari", 450, "Essai", days_ago=40),
        add_book("La Chartreuse de Parme", "Stendhal", 600, "Roman", days_ago=200),
    ]
