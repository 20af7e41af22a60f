"""Challenge manager - lifecycle of a user's joined challenges."""

import logging
from datetime import date
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..db.models import utc_now_iso
from ..db.sqlite import Database, get_db
from .catalog import PREDEFINED_CHALLENGES
from .models import ChallengeEnrollment, ChallengeTemplate
from .progress import ProgressCalculator
from .results import FailureReason, OperationResult
from .schemas import (
    TRANSITIONS,
    ChallengePeriod,
    ChallengeType,
    EnrollmentState,
    EnrollmentSummary,
    TemplateCreate,
    Transition,
    progress_percent,
)

if TYPE_CHECKING:
    from ..badges.evaluator import BadgeEvaluator

logger = logging.getLogger(__name__)


class ChallengeManager:
    """Manages joined challenges: progress, completion and state transitions."""

    def __init__(
        self,
        db: Optional[Database] = None,
        canonical_titles: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], date]] = None,
        badge_evaluator: Optional["BadgeEvaluator"] = None,
        calculator: Optional[ProgressCalculator] = None,
    ):
        """Initialize challenge manager.

        Args:
            db: Database instance
            canonical_titles: Titles of the official templates; enrollments on
                any other predefined template are ghosts
            clock: Returns today's date
            badge_evaluator: Evaluator run when a challenge completes
            calculator: Progress calculator (default: one over `db`)
        """
        self.db = db or get_db()
        self.clock = clock or date.today

        if canonical_titles is None:
            canonical_titles = [c.title for c in PREDEFINED_CHALLENGES]
        self.canonical_titles = frozenset(canonical_titles)

        self.calculator = calculator or ProgressCalculator(self.db, clock=self.clock)

        if badge_evaluator is None:
            from ..badges.evaluator import BadgeEvaluator

            badge_evaluator = BadgeEvaluator(self.db, clock=self.clock)
        self.badges = badge_evaluator

    # =========================================================================
    # Templates
    # =========================================================================

    def list_templates(self, user_id: Optional[str] = None) -> list[ChallengeTemplate]:
        """List challenge templates.

        Args:
            user_id: Also include custom templates this user created

        Returns:
            Predefined templates first, then custom ones, each by title
        """
        with self.db.get_session() as s:
            condition = ChallengeTemplate.is_predefined.is_(True)
            if user_id:
                condition = or_(condition, ChallengeTemplate.created_by == user_id)

            stmt = (
                select(ChallengeTemplate)
                .where(condition)
                .order_by(ChallengeTemplate.is_predefined.desc(), ChallengeTemplate.title)
            )
            templates = list(s.execute(stmt).scalars().all())
            for template in templates:
                s.expunge(template)
            return templates

    def get_template(self, template_id: str) -> Optional[ChallengeTemplate]:
        """Get a template by ID."""
        with self.db.get_session() as s:
            template = s.get(ChallengeTemplate, template_id)
            if template:
                s.expunge(template)
            return template

    def find_template(self, ref: str) -> Optional[ChallengeTemplate]:
        """Find a template by ID or case-insensitive title."""
        template = self.get_template(ref)
        if template:
            return template

        with self.db.get_session() as s:
            stmt = select(ChallengeTemplate).where(
                func.lower(ChallengeTemplate.title) == ref.lower()
            )
            template = s.execute(stmt).scalars().first()
            if template:
                s.expunge(template)
            return template

    def create_custom_challenge(self, user_id: str, data: TemplateCreate) -> OperationResult:
        """Create a personal challenge template and join it straight away.

        Args:
            user_id: Owner of the new template
            data: Template definition, optionally with its own date window

        Returns:
            Result of joining the new template
        """
        try:
            with self.db.get_session() as s:
                template = ChallengeTemplate(
                    title=data.title,
                    description=data.description,
                    challenge_type=data.challenge_type.value,
                    target=data.target,
                    period=data.period.value,
                    icon=data.icon,
                    genre_filter=data.genre_filter,
                    is_predefined=False,
                    created_by=user_id,
                )
                s.add(template)
                s.flush()
                template_id = template.id
        except SQLAlchemyError:
            return self._storage_failure(f"create challenge '{data.title}'")

        logger.info("User %s created custom challenge '%s'", user_id, data.title)

        result = self.join(user_id, template_id, data.start_date, data.end_date)
        self._evaluate_badges(user_id)
        return result

    # =========================================================================
    # Enrollments
    # =========================================================================

    def join(
        self,
        user_id: str,
        template_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> OperationResult:
        """Join a challenge template.

        Progress only counts from `start_date`, which defaults to today so
        that past reading does not complete the challenge on the spot.
        Passing either date gives the enrollment its own window instead of
        the template's rolling period.
        """
        if start_date and end_date and end_date < start_date:
            return OperationResult.fail(
                FailureReason.INVALID_INPUT, "End date must be after start date"
            )

        try:
            return self._join(user_id, template_id, start_date, end_date)
        except SQLAlchemyError:
            return self._storage_failure(f"join challenge {template_id}")

    def _join(
        self,
        user_id: str,
        template_id: str,
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> OperationResult:
        custom_window = start_date is not None or end_date is not None

        with self.db.get_session() as s:
            template = s.get(ChallengeTemplate, template_id)
            if not template:
                return OperationResult.fail(FailureReason.NOT_FOUND, "Challenge not found")

            existing = s.execute(
                select(ChallengeEnrollment.id).where(
                    ChallengeEnrollment.user_id == user_id,
                    ChallengeEnrollment.template_id == template_id,
                )
            ).first()
            if existing:
                return OperationResult.fail(
                    FailureReason.CONFLICT, f"Already joined '{template.title}'"
                )

            enrollment = ChallengeEnrollment(
                user_id=user_id,
                template_id=template_id,
                start_date=(start_date or self.clock()).isoformat(),
                end_date=end_date.isoformat() if end_date else None,
                custom_window=custom_window,
            )
            try:
                with s.begin_nested():
                    s.add(enrollment)
            except IntegrityError:
                return OperationResult.fail(
                    FailureReason.CONFLICT, f"Already joined '{template.title}'"
                )
            enrollment_id = enrollment.id
            title = template.title

        logger.info("User %s joined challenge '%s'", user_id, title)
        return self.refresh_progress(enrollment_id)

    def get_enrollment(self, enrollment_id: str) -> Optional[ChallengeEnrollment]:
        """Get an enrollment (with its template) by ID."""
        with self.db.get_session() as s:
            stmt = select(ChallengeEnrollment).where(ChallengeEnrollment.id == enrollment_id)
            enrollment = s.execute(stmt).unique().scalar_one_or_none()
            if enrollment:
                s.expunge(enrollment)
            return enrollment

    def get_user_enrollment(self, user_id: str, template_id: str) -> Optional[ChallengeEnrollment]:
        """Get a user's enrollment in a template."""
        with self.db.get_session() as s:
            stmt = select(ChallengeEnrollment).where(
                ChallengeEnrollment.user_id == user_id,
                ChallengeEnrollment.template_id == template_id,
            )
            enrollment = s.execute(stmt).unique().scalar_one_or_none()
            if enrollment:
                s.expunge(enrollment)
            return enrollment

    def list_enrollments(
        self,
        user_id: str,
        purge_ghosts: bool = True,
        refresh: bool = False,
        include_archived: bool = True,
    ) -> list[ChallengeEnrollment]:
        """List a user's enrollments.

        Args:
            user_id: Whose enrollments
            purge_ghosts: Delete enrollments on retired templates first
            refresh: Recompute progress of every live enrollment first
            include_archived: Include archived enrollments

        Returns:
            Enrollments, most recently started first
        """
        if purge_ghosts:
            self.purge_ghost_enrollments(user_id)
        if refresh:
            self.refresh_all(user_id)

        with self.db.get_session() as s:
            stmt = select(ChallengeEnrollment).where(ChallengeEnrollment.user_id == user_id)
            if not include_archived:
                stmt = stmt.where(ChallengeEnrollment.state != EnrollmentState.ARCHIVED.value)
            stmt = stmt.order_by(ChallengeEnrollment.started_at.desc())

            enrollments = list(s.execute(stmt).unique().scalars().all())
            for enrollment in enrollments:
                s.expunge(enrollment)
            return enrollments

    def purge_ghost_enrollments(self, user_id: Optional[str] = None) -> int:
        """Delete enrollments whose template was retired from the catalog.

        A ghost is an enrollment on a predefined template whose title is no
        longer canonical, or on a template that no longer exists. Custom
        templates are never ghosts.

        Args:
            user_id: Limit the purge to one user (default: everyone)

        Returns:
            Number of enrollments deleted
        """
        with self.db.get_session() as s:
            stmt = (
                select(ChallengeEnrollment.id)
                .outerjoin(
                    ChallengeTemplate, ChallengeTemplate.id == ChallengeEnrollment.template_id
                )
                .where(
                    or_(
                        ChallengeTemplate.id.is_(None),
                        and_(
                            ChallengeTemplate.is_predefined.is_(True),
                            ChallengeTemplate.title.not_in(self.canonical_titles),
                        ),
                    )
                )
            )
            if user_id:
                stmt = stmt.where(ChallengeEnrollment.user_id == user_id)

            ghost_ids = list(s.execute(stmt).scalars().all())
            if not ghost_ids:
                return 0

            s.execute(delete(ChallengeEnrollment).where(ChallengeEnrollment.id.in_(ghost_ids)))

        logger.info("Purged %d ghost enrollment(s)", len(ghost_ids))
        return len(ghost_ids)

    # =========================================================================
    # Progress
    # =========================================================================

    def refresh_progress(self, enrollment_id: str) -> OperationResult:
        """Recompute an enrollment's progress and complete it if due.

        Completion is sticky: once completed, an enrollment stays completed
        until relaunched, whatever later refreshes compute. Paused and
        archived enrollments get fresh progress but never complete.
        Badges are evaluated when, and only when, this call completes the
        challenge.
        """
        try:
            enrollment = self.get_enrollment(enrollment_id)
            if not enrollment:
                return OperationResult.fail(FailureReason.NOT_FOUND, "Enrollment not found")
            return self._refresh(enrollment)
        except SQLAlchemyError:
            return self._storage_failure(f"refresh enrollment {enrollment_id}")

    def refresh_all(self, user_id: str) -> list[OperationResult]:
        """Refresh every active or paused enrollment of a user.

        Returns:
            One result per enrollment, or a single failure if the
            enrollments could not be listed
        """
        try:
            with self.db.get_session() as s:
                stmt = select(ChallengeEnrollment).where(
                    ChallengeEnrollment.user_id == user_id,
                    ChallengeEnrollment.state.in_(
                        [EnrollmentState.ACTIVE.value, EnrollmentState.PAUSED.value]
                    ),
                )
                enrollments = list(s.execute(stmt).unique().scalars().all())
                for enrollment in enrollments:
                    s.expunge(enrollment)
        except SQLAlchemyError:
            return [self._storage_failure(f"list enrollments of user {user_id}")]

        results = []
        for enrollment in enrollments:
            try:
                results.append(self._refresh(enrollment))
            except SQLAlchemyError:
                results.append(self._storage_failure(f"refresh enrollment {enrollment.id}"))
        return results

    def _refresh(self, enrollment: ChallengeEnrollment) -> OperationResult:
        progress = self.calculator.compute_for_enrollment(enrollment)

        old_state = EnrollmentState(enrollment.state)
        new_state = old_state
        completed_at = enrollment.completed_at
        if old_state == EnrollmentState.ACTIVE and progress >= enrollment.template.target:
            new_state = EnrollmentState.COMPLETED
            completed_at = utc_now_iso()

        if progress == enrollment.progress and new_state == old_state:
            return OperationResult.ok(enrollment)

        # Compare-and-set against the state and progress read above
        with self.db.get_session() as s:
            result = s.execute(
                update(ChallengeEnrollment)
                .where(
                    ChallengeEnrollment.id == enrollment.id,
                    ChallengeEnrollment.state == old_state.value,
                    ChallengeEnrollment.progress == enrollment.progress,
                )
                .values(
                    progress=progress,
                    state=new_state.value,
                    completed_at=completed_at,
                    updated_at=utc_now_iso(),
                )
            )
            swapped = result.rowcount == 1

        if not swapped:
            logger.debug("Enrollment %s changed concurrently, keeping stored state", enrollment.id)
            return OperationResult.ok(self.get_enrollment(enrollment.id))

        newly_completed = new_state != old_state and new_state == EnrollmentState.COMPLETED
        if newly_completed:
            logger.info(
                "User %s completed challenge '%s' (%d/%d)",
                enrollment.user_id,
                enrollment.template.title,
                progress,
                enrollment.template.target,
            )
            self._evaluate_badges(enrollment.user_id)

        return OperationResult.ok(
            self.get_enrollment(enrollment.id), changed=True, newly_completed=newly_completed
        )

    def add_manual_progress(self, enrollment_id: str, delta: int) -> OperationResult:
        """Add a user-entered offset to an enrollment, then refresh it.

        The offset is purely additive, so adding `-delta` undoes `delta`.
        Archived enrollments refuse manual progress.
        """
        try:
            with self.db.get_session() as s:
                result = s.execute(
                    update(ChallengeEnrollment)
                    .where(
                        ChallengeEnrollment.id == enrollment_id,
                        ChallengeEnrollment.state != EnrollmentState.ARCHIVED.value,
                    )
                    .values(manual_progress=ChallengeEnrollment.manual_progress + delta)
                )
                updated = result.rowcount == 1

            if not updated and not self.get_enrollment(enrollment_id):
                return OperationResult.fail(FailureReason.NOT_FOUND, "Enrollment not found")
        except SQLAlchemyError:
            return self._storage_failure(f"add progress to enrollment {enrollment_id}")

        if not updated:
            return OperationResult.fail(
                FailureReason.INVALID_TRANSITION, "Cannot add progress to an archived challenge"
            )

        return self.refresh_progress(enrollment_id)

    # =========================================================================
    # Transitions
    # =========================================================================

    def pause(self, enrollment_id: str) -> OperationResult:
        """Pause an active enrollment."""
        return self._transition(enrollment_id, Transition.PAUSE)

    def resume(self, enrollment_id: str) -> OperationResult:
        """Resume a paused enrollment and catch its progress up."""
        return self._transition(enrollment_id, Transition.RESUME)

    def archive(self, enrollment_id: str) -> OperationResult:
        """Archive an enrollment, hiding it from active views."""
        return self._transition(enrollment_id, Transition.ARCHIVE)

    def relaunch(self, enrollment_id: str) -> OperationResult:
        """Start a completed or archived enrollment over from today.

        Progress, manual progress and completion are cleared and counting
        restarts today. A user-chosen window keeps its end date while that
        date is still ahead; once it has passed, the enrollment falls back
        to the template's rolling period.
        """
        return self._transition(enrollment_id, Transition.RELAUNCH)

    def _transition(self, enrollment_id: str, transition: Transition) -> OperationResult:
        try:
            return self._apply_transition(enrollment_id, transition)
        except SQLAlchemyError:
            return self._storage_failure(f"{transition.value} enrollment {enrollment_id}")

    def _apply_transition(self, enrollment_id: str, transition: Transition) -> OperationResult:
        sources, target = TRANSITIONS[transition]

        with self.db.get_session() as s:
            enrollment = s.get(ChallengeEnrollment, enrollment_id)
            if not enrollment:
                return OperationResult.fail(FailureReason.NOT_FOUND, "Enrollment not found")

            current = EnrollmentState(enrollment.state)
            if current == target:
                s.expunge(enrollment)
                return OperationResult.ok(enrollment)

            if current not in sources:
                return OperationResult.fail(
                    FailureReason.INVALID_TRANSITION,
                    f"Cannot {transition.value} a {current.value} challenge",
                )

            values = {"state": target.value, "updated_at": utc_now_iso()}
            if transition == Transition.RELAUNCH:
                today = self.clock()
                keep_window = bool(enrollment.custom_window) and (
                    enrollment.end is None or enrollment.end >= today
                )
                values.update(
                    progress=0,
                    manual_progress=0,
                    completed_at=None,
                    started_at=utc_now_iso(),
                    start_date=today.isoformat(),
                    end_date=enrollment.end_date if keep_window else None,
                    custom_window=keep_window,
                )

            result = s.execute(
                update(ChallengeEnrollment)
                .where(
                    ChallengeEnrollment.id == enrollment_id,
                    ChallengeEnrollment.state == current.value,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                return OperationResult.fail(
                    FailureReason.CONFLICT, "Challenge was modified concurrently, try again"
                )

        logger.info("Enrollment %s: %s -> %s", enrollment_id, current.value, target.value)

        if transition in (Transition.RESUME, Transition.RELAUNCH):
            refreshed = self.refresh_progress(enrollment_id)
            if refreshed:
                refreshed.changed = True
            return refreshed
        return OperationResult.ok(self.get_enrollment(enrollment_id), changed=True)

    # =========================================================================
    # Summaries
    # =========================================================================

    def summarize(self, enrollment: ChallengeEnrollment) -> EnrollmentSummary:
        """Flatten an enrollment and its template for display."""
        template = enrollment.template
        return EnrollmentSummary(
            id=enrollment.id,
            title=template.title,
            challenge_type=ChallengeType(template.challenge_type),
            period=ChallengePeriod(template.period),
            state=EnrollmentState(enrollment.state),
            progress=enrollment.progress,
            manual_progress=enrollment.manual_progress,
            target=template.target,
            percent=round(progress_percent(enrollment.progress, template.target), 1),
            start_date=enrollment.start,
            end_date=enrollment.end,
            completed_at=enrollment.completed_at,
        )

    # =========================================================================
    # Failure handling
    # =========================================================================

    def _evaluate_badges(self, user_id: str) -> None:
        """Run the badge evaluator, logging storage faults instead of raising.

        Awards are recomputed from stored facts, so badges missed here are
        granted by the next successful evaluation.
        """
        try:
            self.badges.evaluate(user_id)
        except SQLAlchemyError:
            logger.exception("Could not evaluate badges for user %s", user_id)

    @staticmethod
    def _storage_failure(action: str) -> OperationResult:
        logger.exception("Could not %s", action)
        return OperationResult.fail(
            FailureReason.STORAGE_ERROR, f"Could not {action}: storage error"
        )
