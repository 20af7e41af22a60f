"""Tests for ChallengeManager."""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from shelfquest.badges import Badge, BadgeEvaluator
from shelfquest.challenges import (
    CatalogReconciler,
    ChallengeEnrollment,
    ChallengeManager,
    ChallengePeriod,
    ChallengeTemplate,
    ChallengeType,
    EnrollmentState,
    FailureReason,
    TemplateCreate,
)
from shelfquest.db.schemas import BookUpdate

PAGES_TITLE = "📄 Dévoreur de Pages"
ROMAN_TITLE = "📚 Un Roman par Semaine"


class TestChallengeManager:
    """Shared fixtures for ChallengeManager tests."""

    @pytest.fixture
    def catalog(self, db):
        """Sync the predefined templates."""
        CatalogReconciler(db).reconcile()

    @pytest.fixture
    def manager(self, db, clock, catalog):
        """Create manager instance."""
        return ChallengeManager(db, clock=clock)

    @pytest.fixture
    def template_by_title(self, manager):
        def _get(title: str) -> ChallengeTemplate:
            return manager.find_template(title)

        return _get

    @pytest.fixture
    def custom_template(self, db, user_id):
        """Factory inserting a custom template."""

        def _make(
            challenge_type: ChallengeType = ChallengeType.BOOK_COUNT,
            target: int = 2,
            period: ChallengePeriod = ChallengePeriod.ANYTIME,
            title: str = "Mon défi",
        ) -> ChallengeTemplate:
            with db.get_session() as s:
                template = ChallengeTemplate(
                    title=title,
                    challenge_type=challenge_type.value,
                    target=target,
                    period=period.value,
                    is_predefined=False,
                    created_by=user_id,
                )
                s.add(template)
                s.flush()
                s.expunge(template)
            return template

        return _make


class TestJoin(TestChallengeManager):
    """Tests for joining challenges."""

    def test_join(self, manager, template_by_title, user_id, today):
        """Test joining starts an active enrollment counting from today."""
        template = template_by_title(PAGES_TITLE)

        result = manager.join(user_id, template.id)

        assert result.success
        enrollment = result.enrollment
        assert enrollment.state == EnrollmentState.ACTIVE.value
        assert enrollment.progress == 0
        assert enrollment.start == today
        assert enrollment.custom_window is False
        assert enrollment.template.title == PAGES_TITLE

    def test_past_reading_does_not_complete_on_join(
        self, manager, custom_template, add_book, user_id
    ):
        """Test books finished before joining are not counted."""
        add_book("Ancien", days_ago=3)
        template = custom_template(target=1)

        result = manager.join(user_id, template.id)

        assert result.enrollment.progress == 0
        assert not result.is_completed

    def test_join_with_start_date_counts_history(
        self, manager, custom_template, add_book, user_id, today
    ):
        add_book("Ancien", days_ago=3)
        template = custom_template(target=1)

        result = manager.join(user_id, template.id, start_date=today - timedelta(days=10))

        assert result.enrollment.custom_window is True
        assert result.progress == 1
        assert result.newly_completed

    def test_join_twice_conflicts(self, manager, template_by_title, user_id):
        """Test a duplicate join fails without touching the first enrollment."""
        template = template_by_title(PAGES_TITLE)
        first = manager.join(user_id, template.id)

        result = manager.join(user_id, template.id)

        assert not result
        assert result.reason == FailureReason.CONFLICT
        assert manager.get_enrollment(first.enrollment.id) is not None
        assert len(manager.list_enrollments(user_id)) == 1

    def test_other_users_can_join_same_template(self, manager, template_by_title, user_id):
        template = template_by_title(PAGES_TITLE)

        assert manager.join(user_id, template.id)
        assert manager.join("bob", template.id)

    def test_join_unknown_template(self, manager, user_id):
        result = manager.join(user_id, "missing")

        assert result.reason == FailureReason.NOT_FOUND
        assert result.error

    def test_join_end_before_start(self, manager, template_by_title, user_id, today):
        template = template_by_title(PAGES_TITLE)

        result = manager.join(user_id, template.id, start_date=today, end_date=today - timedelta(days=1))

        assert result.reason == FailureReason.INVALID_INPUT


class TestScenarios(TestChallengeManager):
    """End-to-end reading scenarios."""

    def test_yearly_pages_scenario(self, manager, db, template_by_title, add_book, user_id):
        """Test 3000 + 4000 + 5000 pages completes the 10 000 page challenge."""
        template = template_by_title(PAGES_TITLE)
        enrollment = manager.join(user_id, template.id).enrollment

        for pages in (3000, 4000, 5000):
            add_book(f"Pavé {pages}", pages=pages)
        result = manager.refresh_progress(enrollment.id)

        assert result.progress == 12000
        assert result.is_completed
        assert result.newly_completed
        assert result.enrollment.completed_at is not None

        unlocked = {b.badge_key for b in BadgeEvaluator(db).list_badges(user_id)}
        assert {"pages-1000", "pages-5000", "pages-10000"} <= unlocked
        assert "pages-25000" not in unlocked
        assert "challenge-1" in unlocked

    def test_weekly_roman_scenario(self, manager, template_by_title, add_book, user_id):
        """Test a 'Policier' book does not count toward the Roman challenge."""
        template = template_by_title(ROMAN_TITLE)
        enrollment = manager.join(user_id, template.id).enrollment

        add_book("Le Chien des Baskerville", genre="Policier")
        result = manager.refresh_progress(enrollment.id)
        assert result.progress == 0
        assert not result.is_completed

        add_book("Madame Bovary", genre="Roman")
        result = manager.refresh_progress(enrollment.id)
        assert result.progress == 1
        assert result.is_completed


class TestRefreshProgress(TestChallengeManager):
    """Tests for progress refresh and completion."""

    def test_refresh_unknown_enrollment(self, manager):
        result = manager.refresh_progress("missing")

        assert result.reason == FailureReason.NOT_FOUND

    def test_refresh_without_change_is_not_a_write(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template().id).enrollment

        result = manager.refresh_progress(enrollment.id)

        assert result.success
        assert not result.changed
        assert result.enrollment.updated_at == enrollment.updated_at

    def test_completion_is_sticky(self, manager, db, custom_template, add_book, user_id):
        """Test completion survives a later drop in computed progress."""
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment
        book = add_book("Fini")
        completed = manager.refresh_progress(enrollment.id)
        assert completed.is_completed

        # Move the finish date out of the window
        db.update_book(book.id, BookUpdate(date_finished=date(2020, 1, 1)))
        result = manager.refresh_progress(enrollment.id)

        assert result.progress == 0
        assert result.is_completed
        assert result.enrollment.completed_at == completed.enrollment.completed_at

    def test_badges_evaluated_once_per_completion(self, db, clock, custom_template, add_book, user_id):
        """Test badges are checked when a refresh completes, not on later refreshes."""
        evaluator = MagicMock()
        manager = ChallengeManager(db, clock=clock, badge_evaluator=evaluator)
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment

        add_book("Fini")
        manager.refresh_progress(enrollment.id)
        add_book("Encore")
        manager.refresh_progress(enrollment.id)

        evaluator.evaluate.assert_called_once_with(user_id)

    def test_stale_refresh_cannot_complete_twice(
        self, db, clock, custom_template, add_book, user_id
    ):
        """Test a refresh working from an outdated read loses the compare-and-set."""
        evaluator = MagicMock()
        manager = ChallengeManager(db, clock=clock, badge_evaluator=evaluator)
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment
        stale = manager.get_enrollment(enrollment.id)

        add_book("Fini")
        assert manager.refresh_progress(enrollment.id).newly_completed

        result = manager._refresh(stale)

        assert result.success
        assert not result.newly_completed
        assert result.is_completed
        evaluator.evaluate.assert_called_once()

    def test_refresh_all_skips_completed_and_archived(
        self, manager, custom_template, add_book, user_id
    ):
        done = manager.join(user_id, custom_template(target=1, title="Fait").id).enrollment
        add_book("Fini")
        manager.refresh_progress(done.id)
        archived = manager.join(user_id, custom_template(title="Rangé").id).enrollment
        manager.archive(archived.id)
        paused = manager.join(user_id, custom_template(title="En pause").id).enrollment
        manager.pause(paused.id)
        active = manager.join(user_id, custom_template(title="Actif").id).enrollment

        results = manager.refresh_all(user_id)

        assert {r.enrollment.id for r in results} == {paused.id, active.id}


class TestManualProgress(TestChallengeManager):
    """Tests for manual progress offsets."""

    def test_manual_progress_is_reversible(self, manager, custom_template, add_book, user_id):
        """Test adding then removing an offset restores progress."""
        enrollment = manager.join(user_id, custom_template(target=50).id).enrollment
        add_book("Un")
        before = manager.refresh_progress(enrollment.id).progress

        assert manager.add_manual_progress(enrollment.id, 7).progress == before + 7
        result = manager.add_manual_progress(enrollment.id, -7)

        assert result.progress == before
        assert result.enrollment.manual_progress == 0

    def test_manual_progress_can_complete(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template(target=3).id).enrollment

        result = manager.add_manual_progress(enrollment.id, 3)

        assert result.newly_completed
        assert result.is_completed

    def test_manual_progress_on_paused_enrollment(self, manager, custom_template, user_id):
        """Test paused enrollments take the offset but do not complete."""
        enrollment = manager.join(user_id, custom_template(target=3).id).enrollment
        manager.pause(enrollment.id)

        result = manager.add_manual_progress(enrollment.id, 5)

        assert result.progress == 5
        assert result.enrollment.state == EnrollmentState.PAUSED.value

    def test_manual_progress_rejected_when_archived(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template().id).enrollment
        manager.archive(enrollment.id)

        result = manager.add_manual_progress(enrollment.id, 1)

        assert result.reason == FailureReason.INVALID_TRANSITION
        assert manager.get_enrollment(enrollment.id).manual_progress == 0

    def test_manual_progress_unknown_enrollment(self, manager):
        assert manager.add_manual_progress("missing", 1).reason == FailureReason.NOT_FOUND


class TestTransitions(TestChallengeManager):
    """Tests for pause, resume, archive and relaunch."""

    def test_pause_and_resume(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template().id).enrollment

        paused = manager.pause(enrollment.id)
        assert paused.changed
        assert paused.enrollment.is_paused

        resumed = manager.resume(enrollment.id)
        assert resumed.changed
        assert resumed.enrollment.state == EnrollmentState.ACTIVE.value

    def test_pausing_paused_is_noop(self, manager, custom_template, user_id):
        """Test re-applying a transition succeeds without a change."""
        enrollment = manager.join(user_id, custom_template().id).enrollment
        manager.pause(enrollment.id)

        result = manager.pause(enrollment.id)

        assert result.success
        assert not result.changed
        assert result.enrollment.is_paused

    def test_refresh_while_paused(self, manager, custom_template, add_book, user_id):
        """Test paused progress is recomputed and completion waits for resume."""
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment
        manager.pause(enrollment.id)
        add_book("Fini")

        result = manager.refresh_progress(enrollment.id)
        assert result.progress == 1
        assert result.enrollment.is_paused

        resumed = manager.resume(enrollment.id)
        assert resumed.is_completed
        assert resumed.newly_completed

    def test_cannot_pause_completed(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment
        manager.add_manual_progress(enrollment.id, 1)

        result = manager.pause(enrollment.id)

        assert result.reason == FailureReason.INVALID_TRANSITION
        assert manager.get_enrollment(enrollment.id).is_completed

    def test_cannot_relaunch_paused(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template().id).enrollment
        manager.pause(enrollment.id)

        assert manager.relaunch(enrollment.id).reason == FailureReason.INVALID_TRANSITION

    def test_archive_from_any_state(self, manager, custom_template, user_id):
        for i, setup in enumerate((None, "pause", "complete")):
            enrollment = manager.join(user_id, custom_template(target=1, title=f"T{i}").id).enrollment
            if setup == "pause":
                manager.pause(enrollment.id)
            elif setup == "complete":
                manager.add_manual_progress(enrollment.id, 1)

            result = manager.archive(enrollment.id)

            assert result.enrollment.is_archived

    def test_relaunch_resets_progress(
        self, manager, custom_template, add_book, user_id, today
    ):
        """Test relaunch then refresh with no new activity yields 0, not completed."""
        template = custom_template(ChallengeType.PAGE_COUNT, target=500)
        enrollment = manager.join(
            user_id, template.id, start_date=today - timedelta(days=30)
        ).enrollment
        add_book("Pavé", pages=800, days_ago=5)
        manager.add_manual_progress(enrollment.id, 10)
        assert manager.refresh_progress(enrollment.id).is_completed

        relaunched = manager.relaunch(enrollment.id)
        result = manager.refresh_progress(enrollment.id)

        assert relaunched.changed
        assert result.progress == 0
        assert not result.is_completed
        assert result.enrollment.manual_progress == 0
        assert result.enrollment.completed_at is None
        assert result.enrollment.start == today
        assert result.enrollment.end is None

    def test_relaunch_keeps_open_custom_window(
        self, manager, custom_template, add_book, user_id, today
    ):
        """Test an end date still ahead survives relaunch, counting from today."""
        add_book("Dans la fenêtre", days_ago=5)
        enrollment = manager.join(
            user_id,
            custom_template(target=1).id,
            start_date=today - timedelta(days=30),
            end_date=today + timedelta(days=10),
        ).enrollment
        assert enrollment.is_completed

        result = manager.relaunch(enrollment.id)

        assert result.enrollment.custom_window is True
        assert result.enrollment.start == today
        assert result.enrollment.end == today + timedelta(days=10)
        assert result.progress == 0
        assert not result.is_completed

    def test_relaunch_drops_expired_custom_window(
        self, manager, custom_template, add_book, user_id, today
    ):
        add_book("Dans la fenêtre", days_ago=5)
        enrollment = manager.join(
            user_id,
            custom_template(target=1).id,
            start_date=today - timedelta(days=30),
            end_date=today - timedelta(days=1),
        ).enrollment
        assert enrollment.is_completed

        result = manager.relaunch(enrollment.id)

        assert result.enrollment.custom_window is False
        assert result.enrollment.start == today
        assert result.enrollment.end is None

    def test_relaunch_archived(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template().id).enrollment
        manager.archive(enrollment.id)

        result = manager.relaunch(enrollment.id)

        assert result.enrollment.state == EnrollmentState.ACTIVE.value

    def test_transition_unknown_enrollment(self, manager):
        assert manager.archive("missing").reason == FailureReason.NOT_FOUND


class TestListing(TestChallengeManager):
    """Tests for templates, enrollments and ghost cleanup."""

    def test_list_templates(self, manager, custom_template, user_id):
        """Test predefined templates come first, other users' customs are hidden."""
        custom_template(title="Mon défi")
        ChallengeManager(manager.db).create_custom_challenge(
            "bob", TemplateCreate(title="Défi de Bob", target=1)
        )

        titles = [t.title for t in manager.list_templates(user_id)]

        assert len(titles) == 5
        assert titles[-1] == "Mon défi"
        assert "Défi de Bob" not in titles

    def test_find_template_by_title(self, manager):
        template = manager.find_template(ROMAN_TITLE.upper())

        assert template.title == ROMAN_TITLE

    def test_list_excludes_archived_on_request(self, manager, custom_template, user_id):
        kept = manager.join(user_id, custom_template(title="Gardé").id).enrollment
        gone = manager.join(user_id, custom_template(title="Rangé").id).enrollment
        manager.archive(gone.id)

        listed = manager.list_enrollments(user_id, include_archived=False)

        assert [e.id for e in listed] == [kept.id]

    def test_ghost_enrollments_purged(self, manager, db, template_by_title, custom_template, user_id):
        """Test an enrollment on a retired predefined template disappears for good."""
        with db.get_session() as s:
            retired = ChallengeTemplate(
                title="Ancien défi",
                challenge_type=ChallengeType.BOOK_COUNT.value,
                target=5,
                period=ChallengePeriod.ANYTIME.value,
                is_predefined=True,
            )
            s.add(retired)
            s.flush()
            retired_id = retired.id
        manager.join(user_id, retired_id)
        official = manager.join(user_id, template_by_title(PAGES_TITLE).id).enrollment
        custom = manager.join(user_id, custom_template().id).enrollment

        first = {e.id for e in manager.list_enrollments(user_id)}
        second = {e.id for e in manager.list_enrollments(user_id)}

        assert first == {official.id, custom.id}
        assert second == first

    def test_purge_ghosts_is_explicit(self, manager, db, user_id):
        """Test listing without purge leaves ghosts alone."""
        with db.get_session() as s:
            retired = ChallengeTemplate(
                title="Ancien défi",
                challenge_type=ChallengeType.BOOK_COUNT.value,
                target=5,
                period=ChallengePeriod.ANYTIME.value,
                is_predefined=True,
            )
            s.add(retired)
            s.flush()
            retired_id = retired.id
        manager.join(user_id, retired_id)

        assert len(manager.list_enrollments(user_id, purge_ghosts=False)) == 1
        assert manager.purge_ghost_enrollments(user_id) == 1
        assert manager.list_enrollments(user_id, purge_ghosts=False) == []

    def test_list_with_refresh(self, manager, custom_template, add_book, user_id):
        enrollment = manager.join(user_id, custom_template(target=5).id).enrollment
        add_book("Un")

        listed = manager.list_enrollments(user_id, refresh=True)

        assert listed[0].id == enrollment.id
        assert listed[0].progress == 1


class TestCustomChallenges(TestChallengeManager):
    """Tests for user-created challenges."""

    def test_create_custom_challenge_joins_it(self, manager, db, user_id):
        data = TemplateCreate(
            title="Lire 5 policiers",
            challenge_type=ChallengeType.BOOK_COUNT,
            target=5,
            genre_filter="Policier",
        )

        result = manager.create_custom_challenge(user_id, data)

        assert result.success
        template = result.enrollment.template
        assert template.is_predefined is False
        assert template.created_by == user_id
        assert template.genre_filter == "Policier"

        badges = {b.badge_key for b in BadgeEvaluator(db).list_badges(user_id)}
        assert "create-challenge" in badges

    def test_custom_challenge_with_window(self, manager, add_book, user_id, today):
        add_book("Dans la fenêtre", days_ago=5)
        add_book("Hors fenêtre", days_ago=40)
        data = TemplateCreate(
            title="Printemps",
            target=10,
            start_date=today - timedelta(days=30),
            end_date=today,
        )

        result = manager.create_custom_challenge(user_id, data)

        assert result.progress == 1

    def test_invalid_template_rejected_by_schema(self):
        with pytest.raises(ValueError):
            TemplateCreate(title="Zéro", target=0)

    def test_summarize(self, manager, custom_template, user_id):
        enrollment = manager.join(user_id, custom_template(target=4).id).enrollment
        enrollment = manager.add_manual_progress(enrollment.id, 1).enrollment

        summary = manager.summarize(enrollment)

        assert summary.title == "Mon défi"
        assert summary.percent == 25.0
        assert summary.state == EnrollmentState.ACTIVE


class TestStorageFailures(TestChallengeManager):
    """Tests for database faults surfacing as failure results."""

    @pytest.fixture
    def broken_enrollments(self, db, manager, custom_template, user_id):
        """Join a challenge, then drop the enrollment table under the manager."""
        template = custom_template()
        enrollment = manager.join(user_id, template.id).enrollment
        ChallengeEnrollment.__table__.drop(db.engine)
        return template, enrollment

    @pytest.mark.parametrize(
        "operation",
        [
            lambda m, t, e, u: m.pause(e.id),
            lambda m, t, e, u: m.resume(e.id),
            lambda m, t, e, u: m.archive(e.id),
            lambda m, t, e, u: m.relaunch(e.id),
            lambda m, t, e, u: m.refresh_progress(e.id),
            lambda m, t, e, u: m.add_manual_progress(e.id, 1),
            lambda m, t, e, u: m.join("bob", t.id),
            lambda m, t, e, u: m.create_custom_challenge(u, TemplateCreate(title="Neuf", target=1)),
        ],
        ids=[
            "pause",
            "resume",
            "archive",
            "relaunch",
            "refresh",
            "manual",
            "join",
            "create",
        ],
    )
    def test_operation_returns_storage_error(
        self, manager, broken_enrollments, user_id, operation, caplog
    ):
        template, enrollment = broken_enrollments

        result = operation(manager, template, enrollment, user_id)

        assert not result.success
        assert result.reason == FailureReason.STORAGE_ERROR
        assert "Could not" in caplog.text

    def test_refresh_all_returns_storage_error(self, manager, broken_enrollments, user_id):
        results = manager.refresh_all(user_id)

        assert len(results) == 1
        assert results[0].reason == FailureReason.STORAGE_ERROR

    def test_unknown_enrollment_on_broken_table(self, manager, broken_enrollments):
        """Test a storage fault is reported even for an unknown ID."""
        assert manager.pause("nope").reason == FailureReason.STORAGE_ERROR


class TestBadgeFailures(TestChallengeManager):
    """Tests for completions whose badge evaluation fails."""

    def test_evaluator_fault_keeps_completion(
        self, db, clock, custom_template, add_book, user_id, caplog
    ):
        evaluator = MagicMock()
        evaluator.evaluate.side_effect = OperationalError(
            "SELECT", {}, Exception("database is locked")
        )
        manager = ChallengeManager(db, clock=clock, badge_evaluator=evaluator)
        enrollment = manager.join(user_id, custom_template(target=1).id).enrollment
        add_book("Fini")

        result = manager.refresh_progress(enrollment.id)

        assert result.success
        assert result.newly_completed
        assert manager.get_enrollment(enrollment.id).is_completed
        assert "Could not evaluate badges" in caplog.text

    def test_missing_badge_table_then_later_award(
        self, db, manager, custom_template, user_id
    ):
        """Test a completion whose badges failed still earns them on the next evaluation."""
        enrollment = manager.join(user_id, custom_template(target=2).id).enrollment
        Badge.__table__.drop(db.engine)

        result = manager.add_manual_progress(enrollment.id, 5)

        assert result.success
        assert result.newly_completed
        stored = manager.get_enrollment(enrollment.id)
        assert stored.state == EnrollmentState.COMPLETED.value
        assert stored.progress == 5

        Badge.__table__.create(db.engine)
        awarded = {b.badge_key for b in BadgeEvaluator(db).evaluate(user_id)}
        assert "challenge-1" in awarded
