"""Predefined challenge catalog and its reconciler."""

import logging
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..db.sqlite import Database, get_db
from .models import ChallengeEnrollment, ChallengeTemplate
from .schemas import ChallengePeriod, ChallengeType, PredefinedTemplate, ReconcileReport

logger = logging.getLogger(__name__)


PREDEFINED_CHALLENGES: list[PredefinedTemplate] = [
    PredefinedTemplate(
        title="📄 Dévoreur de Pages",
        description="Lisez 10 000 pages par an",
        challenge_type=ChallengeType.PAGE_COUNT,
        target=10000,
        period=ChallengePeriod.YEARLY,
        icon="📄",
    ),
    PredefinedTemplate(
        title="📚 Un Roman par Semaine",
        description="Lisez 1 roman chaque semaine",
        challenge_type=ChallengeType.BOOK_COUNT,
        target=1,
        period=ChallengePeriod.WEEKLY,
        icon="📚",
        genre_filter="Roman",
    ),
    PredefinedTemplate(
        title="🗯️ Fan de BD",
        description="Lisez 3 bandes dessinées par mois",
        challenge_type=ChallengeType.BOOK_COUNT,
        target=3,
        period=ChallengePeriod.MONTHLY,
        icon="🗯️",
        genre_filter="BD",
    ),
    PredefinedTemplate(
        title="✍️ Critique Littéraire",
        description="Rédigez 10 critiques par an",
        challenge_type=ChallengeType.REVIEW_COUNT,
        target=10,
        period=ChallengePeriod.YEARLY,
        icon="✍️",
    ),
]


class CatalogReconciler:
    """Keeps the predefined templates in the database in line with a canonical list."""

    def __init__(self, db: Optional[Database] = None):
        """Initialize catalog reconciler.

        Args:
            db: Database instance
        """
        self.db = db or get_db()

    def reconcile(
        self, canonical: Sequence[PredefinedTemplate] = PREDEFINED_CHALLENGES
    ) -> ReconcileReport:
        """Create missing predefined templates and retire stale ones.

        Templates are matched by title. Retiring a template deletes the
        enrollments that reference it. A template that fails to sync is
        logged and recorded in the report; the others still go through.
        """
        report = ReconcileReport()
        wanted = {item.title: item for item in canonical}

        with self.db.get_session() as s:
            existing = {
                title: template_id
                for template_id, title in s.execute(
                    select(ChallengeTemplate.id, ChallengeTemplate.title).where(
                        ChallengeTemplate.is_predefined.is_(True)
                    )
                ).all()
            }

        for title, item in wanted.items():
            if title in existing:
                continue
            try:
                self._create(item)
            except SQLAlchemyError:
                logger.exception("Could not create predefined challenge '%s'", title)
                report.failed.append(title)
                continue
            report.created.append(title)

        for title, template_id in existing.items():
            if title in wanted:
                continue
            try:
                purged = self._retire(template_id)
            except SQLAlchemyError:
                logger.exception("Could not retire predefined challenge '%s'", title)
                report.failed.append(title)
                continue
            report.retired.append(title)
            report.purged_enrollments += purged

        if report.changed:
            logger.info(
                "Catalog synced: %d created, %d retired, %d enrollment(s) purged",
                len(report.created),
                len(report.retired),
                report.purged_enrollments,
            )
        return report

    def _create(self, item: PredefinedTemplate) -> None:
        with self.db.get_session() as s:
            s.add(
                ChallengeTemplate(
                    title=item.title,
                    description=item.description,
                    challenge_type=item.challenge_type.value,
                    target=item.target,
                    period=item.period.value,
                    icon=item.icon,
                    genre_filter=item.genre_filter,
                    is_predefined=True,
                )
            )

    def _retire(self, template_id: str) -> int:
        with self.db.get_session() as s:
            template = s.get(ChallengeTemplate, template_id)
            if not template:
                return 0
            purged = s.execute(
                select(func.count(ChallengeEnrollment.id)).where(
                    ChallengeEnrollment.template_id == template_id
                )
            ).scalar() or 0
            # Enrollments go with the template through the relationship cascade
            s.delete(template)
            return purged
