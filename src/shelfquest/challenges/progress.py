"""Progress calculator - turns reading activity into challenge progress."""

import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..activity.store import ActivityStore
from ..activity.window import DateWindow
from ..db.sqlite import Database, get_db
from ..streaks.calculator import StreakCalculator
from .models import ChallengeEnrollment, ChallengeTemplate
from .schemas import ChallengePeriod, ChallengeType, window_for_period

logger = logging.getLogger(__name__)


def window_for_enrollment(
    enrollment: ChallengeEnrollment, today: Optional[date] = None
) -> DateWindow:
    """Window an enrollment's progress is measured over.

    User-chosen dates win outright. Otherwise the template's rolling period
    applies, but never reaching back before the day the user joined.
    """
    if enrollment.custom_window:
        return DateWindow(start=enrollment.start, end=enrollment.end)

    window = window_for_period(ChallengePeriod(enrollment.template.period), today)
    joined = enrollment.start
    if joined and (window.start is None or joined > window.start):
        return DateWindow(start=joined, end=window.end)
    return window


class ProgressCalculator:
    """Computes progress for each challenge type."""

    def __init__(
        self,
        db: Optional[Database] = None,
        store: Optional[ActivityStore] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        """Initialize progress calculator.

        Args:
            db: Database instance
            store: Activity store (default: one over `db`)
            clock: Returns today's date
        """
        self.db = db or get_db()
        self.store = store or ActivityStore(self.db)
        self.clock = clock or date.today

        self._strategies: dict[ChallengeType, Callable[[str, ChallengeTemplate, DateWindow], int]] = {
            ChallengeType.BOOK_COUNT: self._book_count,
            ChallengeType.PAGE_COUNT: self._page_count,
            ChallengeType.LONG_BOOKS: self._long_books,
            ChallengeType.GENRE_DIVERSITY: self._genre_diversity,
            ChallengeType.AUTHOR_DIVERSITY: self._author_diversity,
            ChallengeType.REVIEW_COUNT: self._review_count,
            ChallengeType.QUOTE_COUNT: self._quote_count,
            ChallengeType.READING_STREAK: self._reading_streak,
            ChallengeType.COLLECTION_SIZE: self._collection_size,
        }

    def compute_progress(
        self,
        user_id: str,
        template: ChallengeTemplate,
        window: Optional[DateWindow] = None,
        manual_progress: int = 0,
    ) -> int:
        """Compute progress for a template.

        Args:
            user_id: Whose activity to count
            template: Challenge definition
            window: Explicit window (default: derived from the template's period)
            manual_progress: User-entered offset added to the computed value

        Returns:
            Computed progress plus manual_progress, or 0 if the activity
            data could not be read
        """
        if window is None:
            window = window_for_period(ChallengePeriod(template.period), self.clock())

        try:
            challenge_type = ChallengeType(template.challenge_type)
        except ValueError:
            logger.warning(
                "Unknown challenge type %r on template %s", template.challenge_type, template.id
            )
            return manual_progress

        try:
            base = self._strategies[challenge_type](user_id, template, window)
        except SQLAlchemyError:
            logger.exception(
                "Could not compute progress for template %s, falling back to 0", template.id
            )
            return 0

        return base + manual_progress

    def compute_for_enrollment(self, enrollment: ChallengeEnrollment) -> int:
        """Compute progress for an enrollment using its own window and offset."""
        window = window_for_enrollment(enrollment, self.clock())
        return self.compute_progress(
            enrollment.user_id,
            enrollment.template,
            window,
            enrollment.manual_progress or 0,
        )

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _book_count(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_completed_books(
            user_id, window, genre=template.effective_genre_filter
        )

    def _page_count(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.sum_pages(user_id, window)

    def _long_books(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_long_books(user_id, window)

    def _genre_diversity(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_distinct_genres(user_id, window)

    # The following types count all-time activity and ignore the window

    def _author_diversity(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_distinct_authors(user_id)

    def _review_count(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_reviews(user_id)

    def _quote_count(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.count_quotes(user_id)

    def _reading_streak(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        dates = self.store.activity_dates(user_id)
        return StreakCalculator(dates, self.clock()).current_streak()

    def _collection_size(self, user_id: str, template: ChallengeTemplate, window: DateWindow) -> int:
        return self.store.largest_collection_size(user_id)
