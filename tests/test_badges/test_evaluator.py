"""Tests for BadgeEvaluator."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from shelfquest.badges import BADGES, Badge, BadgeCategory, BadgeEvaluator, BadgeFacts
from shelfquest.badges.rules import ALL_PREDEFINED_KEY, get_rule
from shelfquest.challenges import CatalogReconciler, ChallengeEnrollment, EnrollmentState
from shelfquest.challenges.models import ChallengeTemplate
from shelfquest.db.models import utc_now_iso
from shelfquest.db.schemas import QuoteCreate


@pytest.fixture
def evaluator(db, clock):
    return BadgeEvaluator(db, clock=clock)


def keys(badges) -> set[str]:
    return {b.badge_key for b in badges}


def complete_enrollment(db, user_id: str, template_id: str, state=EnrollmentState.COMPLETED):
    with db.get_session() as s:
        s.add(
            ChallengeEnrollment(
                user_id=user_id,
                template_id=template_id,
                progress=1,
                state=state.value,
                completed_at=utc_now_iso(),
            )
        )


class TestRuleTable:
    """Tests for the static rule table."""

    def test_keys_and_names_unique(self):
        assert len({r.key for r in BADGES}) == len(BADGES)
        assert len({r.name for r in BADGES}) == len(BADGES)

    def test_get_rule(self):
        assert get_rule("read-1").name == "Premier Chapitre"
        assert get_rule("missing") is None


class TestIsSatisfied:
    """Tests for single rule checks against facts."""

    @pytest.mark.parametrize(
        "key, facts, expected",
        [
            ("read-5", BadgeFacts(completed_books=5), True),
            ("read-5", BadgeFacts(completed_books=4), False),
            ("pages-10000", BadgeFacts(total_pages=12000), True),
            ("pages-25000", BadgeFacts(total_pages=12000), False),
            ("streak-7", BadgeFacts(current_streak=7), True),
            ("review-5", BadgeFacts(review_count=5, quote_count=0), True),
            ("quote-10", BadgeFacts(review_count=10, quote_count=9), False),
            ("challenge-3", BadgeFacts(completed_challenges=3), True),
            ("genre-5", BadgeFacts(distinct_genres=5), True),
            ("long-book", BadgeFacts(has_long_book=True), True),
            ("fast-read", BadgeFacts(), False),
            ("author-3", BadgeFacts(max_books_by_author=3), True),
            ("create-challenge", BadgeFacts(custom_templates=1), True),
        ],
    )
    def test_rule(self, key, facts, expected):
        assert BadgeEvaluator.is_satisfied(get_rule(key), facts) is expected

    def test_all_predefined_needs_every_template(self):
        rule = get_rule(ALL_PREDEFINED_KEY)

        assert BadgeEvaluator.is_satisfied(
            rule, BadgeFacts(predefined_templates=4, completed_predefined=4)
        )
        assert not BadgeEvaluator.is_satisfied(
            rule, BadgeFacts(predefined_templates=4, completed_predefined=3)
        )

    def test_all_predefined_with_empty_catalog(self):
        """Test an empty catalog does not hand out the badge for free."""
        rule = get_rule(ALL_PREDEFINED_KEY)

        assert not BadgeEvaluator.is_satisfied(rule, BadgeFacts())


class TestEvaluate:
    """Tests for awarding badges from stored activity."""

    def test_no_activity_no_badges(self, evaluator, user_id):
        assert evaluator.evaluate(user_id) == []

    def test_evaluate_is_idempotent(self, evaluator, db, add_book, user_id):
        """Test a second run awards nothing and leaves one row per badge."""
        for i in range(5):
            add_book(f"Livre {i}", pages=250)

        first = evaluator.evaluate(user_id)
        second = evaluator.evaluate(user_id)

        assert {"read-1", "read-5", "pages-1000"} <= keys(first)
        assert second == []
        with db.get_session() as s:
            rows = s.execute(
                select(Badge.name, func.count(Badge.id))
                .where(Badge.user_id == user_id)
                .group_by(Badge.name)
            ).all()
        assert len(rows) == len(first)
        assert all(count == 1 for _, count in rows)

    def test_reading_and_pages(self, evaluator, add_book, user_id):
        for pages in (3000, 4000, 5000):
            add_book(f"Pavé {pages}", pages=pages)

        awarded = keys(evaluator.evaluate(user_id))

        assert {"read-1", "pages-1000", "pages-5000", "pages-10000", "long-book"} <= awarded
        assert "read-5" not in awarded
        assert "pages-25000" not in awarded

    def test_streak(self, evaluator, db, add_book, user_id, today):
        book = add_book("Dune", days_ago=0, read_in_days=2)
        db.log_activity(user_id, book.id, today - timedelta(days=1))

        awarded = keys(evaluator.evaluate(user_id))

        assert "streak-3" in awarded
        assert "streak-7" not in awarded

    def test_social(self, evaluator, db, add_book, user_id):
        book = add_book("Dune", comments="Un chef-d'oeuvre")
        db.add_quote(user_id, QuoteCreate(book_id=book.id, text="Fear is the mind-killer"))

        awarded = keys(evaluator.evaluate(user_id))

        assert {"review-1", "quote-1"} <= awarded
        assert "review-5" not in awarded

    def test_special(self, evaluator, add_book, user_id):
        for i, genre in enumerate(("Roman", "BD", "Essai", "Poésie", "SF")):
            add_book(f"G{i}", author="Hugo" if i < 3 else f"A{i}", genre=genre, pages=100)
        add_book("Éclair", pages=120, read_in_days=1)

        awarded = keys(evaluator.evaluate(user_id))

        assert {"genre-5", "author-3", "fast-read"} <= awarded
        assert "long-book" not in awarded

    def test_other_users_activity_ignored(self, evaluator, add_book, user_id):
        add_book("Theirs", owner="bob")

        assert evaluator.evaluate(user_id) == []


class TestChallengeBadges:
    """Tests for badges driven by completed challenges."""

    def test_archived_completion_still_counts(self, evaluator, db, user_id):
        CatalogReconciler(db).reconcile()
        with db.get_session() as s:
            template_id = s.execute(select(ChallengeTemplate.id)).scalars().first()
        complete_enrollment(db, user_id, template_id, state=EnrollmentState.ARCHIVED)

        assert "challenge-1" in keys(evaluator.evaluate(user_id))

    def test_collect_challenge_facts(self, evaluator, db, user_id):
        CatalogReconciler(db).reconcile()
        with db.get_session() as s:
            template_id = s.execute(select(ChallengeTemplate.id)).scalars().first()
            s.add(
                ChallengeTemplate(
                    title="Mon défi",
                    challenge_type="BOOK_COUNT",
                    target=1,
                    period="ANYTIME",
                    is_predefined=False,
                    created_by=user_id,
                )
            )
        complete_enrollment(db, user_id, template_id)

        facts = evaluator.collect_facts(user_id)

        assert facts.completed_challenges == 1
        assert facts.completed_predefined == 1
        assert facts.predefined_templates == 4
        assert facts.custom_templates == 1

    def test_all_predefined_completed(self, evaluator, db, user_id):
        CatalogReconciler(db).reconcile()
        with db.get_session() as s:
            template_ids = s.execute(
                select(ChallengeTemplate.id).where(ChallengeTemplate.is_predefined)
            ).scalars().all()

        for template_id in template_ids[:-1]:
            complete_enrollment(db, user_id, template_id)
        first = keys(evaluator.evaluate(user_id))
        assert "challenge-3" in first
        assert ALL_PREDEFINED_KEY not in first

        complete_enrollment(db, user_id, template_ids[-1])

        assert ALL_PREDEFINED_KEY in keys(evaluator.evaluate(user_id))


class TestAward:
    """Tests for single awards and listing."""

    def test_award_once(self, evaluator, user_id):
        rule = get_rule("read-1")

        assert evaluator.award(user_id, rule).name == rule.name
        assert evaluator.award(user_id, rule) is None
        assert len(evaluator.list_badges(user_id)) == 1

    def test_concurrent_insert_counts_as_awarded(self, evaluator, db, user_id):
        """Test a unique violation from a racing writer is absorbed."""
        rule = get_rule("read-1")
        evaluator.award(user_id, rule)

        with db.get_session() as s:
            assert evaluator._insert_badge(s, user_id, rule) is None

        assert len(evaluator.list_badges(user_id)) == 1

    def test_badge_board(self, evaluator, user_id):
        evaluator.award(user_id, get_rule("streak-3"))

        board = evaluator.badge_board(user_id)

        assert set(board) == set(BadgeCategory)
        assert sum(len(entries) for entries in board.values()) == len(BADGES)
        streaks = {e.key: e for e in board[BadgeCategory.STREAK]}
        assert streaks["streak-3"].unlocked
        assert streaks["streak-3"].unlocked_at is not None
        assert not streaks["streak-7"].unlocked
