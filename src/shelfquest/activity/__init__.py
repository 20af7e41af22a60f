"""Read access to the reading activity challenges are computed from."""

from .store import FAST_READ_DAYS, LONG_BOOK_PAGES, ActivityStore
from .window import DateWindow

__all__ = ["ActivityStore", "DateWindow", "FAST_READ_DAYS", "LONG_BOOK_PAGES"]
