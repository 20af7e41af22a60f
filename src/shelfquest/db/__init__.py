"""Database module for local SQLite storage of reading activity."""

from .models import Base, Book, Collection, CollectionBook, Quote, ReadingActivity
from .schemas import (
    ActivityType,
    BookCreate,
    BookStatus,
    BookUpdate,
    CollectionCreate,
    QuoteCreate,
)
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Base",
    "Book",
    "Collection",
    "CollectionBook",
    "Quote",
    "ReadingActivity",
    "ActivityType",
    "BookCreate",
    "BookStatus",
    "BookUpdate",
    "CollectionCreate",
    "QuoteCreate",
    "Database",
    "get_db",
    "reset_db",
]
