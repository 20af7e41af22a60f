"""Badge evaluator - unlocks achievement badges from the rule table."""

import logging
from datetime import date
from typing import Callable, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..activity.store import ActivityStore
from ..challenges.models import ChallengeEnrollment, ChallengeTemplate
from ..db.sqlite import Database, get_db
from ..streaks.calculator import StreakCalculator
from .models import Badge
from .rules import ALL_PREDEFINED_KEY, BADGES, BadgeCategory, BadgeRule, rules_by_category
from .schemas import BadgeBoardEntry, BadgeFacts

logger = logging.getLogger(__name__)

# Non-parametric SPECIAL badges, keyed by rule key
SPECIAL_CHECKS: dict[str, Callable[[BadgeFacts, BadgeRule], bool]] = {
    "genre-5": lambda facts, rule: facts.distinct_genres >= (rule.target or 5),
    "long-book": lambda facts, rule: facts.has_long_book,
    "create-challenge": lambda facts, rule: facts.custom_templates >= 1,
    "author-3": lambda facts, rule: facts.max_books_by_author >= (rule.target or 3),
    "fast-read": lambda facts, rule: facts.has_fast_read,
}


class BadgeEvaluator:
    """Checks aggregate reading facts against the badge rules."""

    def __init__(
        self,
        db: Optional[Database] = None,
        store: Optional[ActivityStore] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        """Initialize badge evaluator.

        Args:
            db: Database instance
            store: Activity store (default: one over `db`)
            clock: Returns today's date, used for the current streak
        """
        self.db = db or get_db()
        self.store = store or ActivityStore(self.db)
        self.clock = clock or date.today

    # -------------------------------------------------------------------------
    # Facts
    # -------------------------------------------------------------------------

    def collect_facts(self, user_id: str) -> BadgeFacts:
        """Gather every fact the rule table needs in a single session."""
        with self.db.get_session() as s:
            store = self.store
            dates = store.activity_dates(user_id, session=s)

            return BadgeFacts(
                completed_books=store.count_completed_books(user_id, session=s),
                total_pages=store.sum_pages(user_id, session=s),
                review_count=store.count_reviews(user_id, session=s),
                distinct_genres=store.count_distinct_genres(user_id, session=s),
                max_books_by_author=store.max_books_by_one_author(user_id, session=s),
                quote_count=store.count_quotes(user_id, session=s),
                current_streak=StreakCalculator(dates, self.clock()).current_streak(),
                has_long_book=store.count_long_books(user_id, session=s) > 0,
                has_fast_read=store.has_fast_read(user_id, session=s),
                **self._challenge_facts(s, user_id),
            )

    @staticmethod
    def _challenge_facts(session: Session, user_id: str) -> dict[str, int]:
        # Completed at least once; archiving a finished challenge keeps it counted
        completed = ChallengeEnrollment.completed_at.is_not(None)

        completed_challenges = session.execute(
            select(func.count(ChallengeEnrollment.id)).where(
                ChallengeEnrollment.user_id == user_id, completed
            )
        ).scalar() or 0

        predefined_templates = session.execute(
            select(func.count(ChallengeTemplate.id)).where(ChallengeTemplate.is_predefined)
        ).scalar() or 0

        completed_predefined = session.execute(
            select(func.count(distinct(ChallengeEnrollment.template_id)))
            .join(ChallengeTemplate, ChallengeTemplate.id == ChallengeEnrollment.template_id)
            .where(
                ChallengeEnrollment.user_id == user_id,
                completed,
                ChallengeTemplate.is_predefined,
            )
        ).scalar() or 0

        custom_templates = session.execute(
            select(func.count(ChallengeTemplate.id)).where(
                ChallengeTemplate.created_by == user_id,
                ChallengeTemplate.is_predefined.is_(False),
            )
        ).scalar() or 0

        return {
            "completed_challenges": completed_challenges,
            "predefined_templates": predefined_templates,
            "completed_predefined": completed_predefined,
            "custom_templates": custom_templates,
        }

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @staticmethod
    def is_satisfied(rule: BadgeRule, facts: BadgeFacts) -> bool:
        """Check a single rule against the facts."""
        target = rule.target or 0

        if rule.category == BadgeCategory.READING:
            return facts.completed_books >= target
        if rule.category == BadgeCategory.PAGES:
            return facts.total_pages >= target
        if rule.category == BadgeCategory.STREAK:
            return facts.current_streak >= target
        if rule.category == BadgeCategory.SOCIAL:
            if rule.key.startswith("review"):
                return facts.review_count >= target
            if rule.key.startswith("quote"):
                return facts.quote_count >= target
            return False
        if rule.category == BadgeCategory.CHALLENGE:
            if rule.key == ALL_PREDEFINED_KEY:
                return (
                    facts.predefined_templates > 0
                    and facts.completed_predefined >= facts.predefined_templates
                )
            return facts.completed_challenges >= target
        if rule.category == BadgeCategory.SPECIAL:
            check = SPECIAL_CHECKS.get(rule.key)
            return bool(check and check(facts, rule))
        return False

    def evaluate(self, user_id: str) -> list[Badge]:
        """Award every badge whose rule now holds.

        Safe to call repeatedly: badges already held are skipped.

        Returns:
            Badges awarded by this call
        """
        facts = self.collect_facts(user_id)
        satisfied = [rule for rule in BADGES if self.is_satisfied(rule, facts)]
        if not satisfied:
            return []

        awarded = []
        with self.db.get_session() as s:
            held = set(
                s.execute(select(Badge.name).where(Badge.user_id == user_id)).scalars().all()
            )
            for rule in satisfied:
                if rule.name in held:
                    continue
                badge = self._insert_badge(s, user_id, rule)
                if badge:
                    awarded.append(badge)

            for badge in awarded:
                s.expunge(badge)

        return awarded

    def award(self, user_id: str, rule: BadgeRule) -> Optional[Badge]:
        """Award a single badge unless the user already holds it.

        Returns:
            The new badge, or None if it was already awarded
        """
        with self.db.get_session() as s:
            existing = s.execute(
                select(Badge.id).where(Badge.user_id == user_id, Badge.name == rule.name)
            ).first()
            if existing:
                return None

            badge = self._insert_badge(s, user_id, rule)
            if badge:
                s.expunge(badge)
            return badge

    def _insert_badge(self, session: Session, user_id: str, rule: BadgeRule) -> Optional[Badge]:
        badge = Badge(
            user_id=user_id,
            badge_key=rule.key,
            name=rule.name,
            description=rule.description,
            icon=rule.icon,
            category=rule.category.value,
        )
        try:
            with session.begin_nested():
                session.add(badge)
        except IntegrityError:
            # Another caller awarded it first
            logger.debug("Badge '%s' already held by user %s", rule.name, user_id)
            return None

        logger.info("Unlocked badge '%s' for user %s", rule.name, user_id)
        return badge

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_badges(self, user_id: str) -> list[Badge]:
        """List a user's badges, most recently unlocked first."""
        with self.db.get_session() as s:
            stmt = (
                select(Badge)
                .where(Badge.user_id == user_id)
                .order_by(Badge.unlocked_at.desc())
            )
            badges = list(s.execute(stmt).scalars().all())
            for badge in badges:
                s.expunge(badge)
            return badges

    def badge_board(self, user_id: str) -> dict[BadgeCategory, list[BadgeBoardEntry]]:
        """Every badge grouped by category with its unlock status."""
        unlocked = {badge.name: badge for badge in self.list_badges(user_id)}

        board: dict[BadgeCategory, list[BadgeBoardEntry]] = {}
        for category, rules in rules_by_category().items():
            board[category] = [
                BadgeBoardEntry(
                    key=rule.key,
                    name=rule.name,
                    description=rule.description,
                    icon=rule.icon,
                    category=rule.category,
                    target=rule.target,
                    unlocked=rule.name in unlocked,
                    unlocked_at=unlocked[rule.name].unlocked_at if rule.name in unlocked else None,
                )
                for rule in rules
            ]
        return board
