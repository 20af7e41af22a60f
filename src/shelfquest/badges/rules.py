"""Static badge rule table.

Rules are configuration, not data: the evaluator walks this table and
unlocks every badge whose condition holds for a user's aggregate facts.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BadgeCategory(str, Enum):
    """Badge families, each with its own unlock condition."""

    READING = "READING"
    PAGES = "PAGES"
    STREAK = "STREAK"
    SOCIAL = "SOCIAL"
    CHALLENGE = "CHALLENGE"
    SPECIAL = "SPECIAL"


@dataclass(frozen=True)
class BadgeRule:
    """A badge definition and its threshold."""

    key: str
    name: str
    description: str
    icon: str
    category: BadgeCategory
    target: Optional[int] = None


ALL_PREDEFINED_KEY = "challenge-all-predefined"

BADGES: tuple[BadgeRule, ...] = (
    # Books read
    BadgeRule("read-1", "Premier Chapitre", "Lire 1 livre", "📖", BadgeCategory.READING, 1),
    BadgeRule("read-5", "Rat de Bibliothèque", "Lire 5 livres", "🐭", BadgeCategory.READING, 5),
    BadgeRule("read-10", "Dévoreur de Livres", "Lire 10 livres", "📚", BadgeCategory.READING, 10),
    BadgeRule("read-20", "Bibliothèque Ambulante", "Lire 20 livres", "🎒", BadgeCategory.READING, 20),
    BadgeRule("read-50", "Erudit", "Lire 50 livres", "🎓", BadgeCategory.READING, 50),
    BadgeRule("read-100", "Légende Littéraire", "Lire 100 livres", "👑", BadgeCategory.READING, 100),
    # Pages read
    BadgeRule("pages-1000", "Tourneur de Pages", "Lire 1000 pages", "📄", BadgeCategory.PAGES, 1000),
    BadgeRule("pages-5000", "Voyageur de Mots", "Lire 5000 pages", "🌍", BadgeCategory.PAGES, 5000),
    BadgeRule("pages-10000", "Marathonien", "Lire 10,000 pages", "🏃", BadgeCategory.PAGES, 10000),
    BadgeRule("pages-25000", "Encyclopédie Vivante", "Lire 25,000 pages", "🧠", BadgeCategory.PAGES, 25000),
    # Streaks
    BadgeRule("streak-3", "Échauffement", "Lire 3 jours de suite", "🔥", BadgeCategory.STREAK, 3),
    BadgeRule("streak-7", "Habitué", "Lire 7 jours de suite", "📅", BadgeCategory.STREAK, 7),
    BadgeRule("streak-14", "Passionné", "Lire 14 jours de suite", "❤️", BadgeCategory.STREAK, 14),
    BadgeRule("streak-30", "Inarrêtable", "Lire 30 jours de suite", "🚀", BadgeCategory.STREAK, 30),
    BadgeRule("streak-100", "Immortel", "Lire 100 jours de suite", "⚡", BadgeCategory.STREAK, 100),
    # Reviews and quotes
    BadgeRule("review-1", "Critique Amateur", "Rédiger 1 critique", "✍️", BadgeCategory.SOCIAL, 1),
    BadgeRule("review-5", "Plume Affûtée", "Rédiger 5 critiques", "🖋️", BadgeCategory.SOCIAL, 5),
    BadgeRule("review-10", "Voix Influente", "Rédiger 10 critiques", "📢", BadgeCategory.SOCIAL, 10),
    BadgeRule("quote-1", "Collectionneur", "Sauvegarder 1 citation", "💬", BadgeCategory.SOCIAL, 1),
    BadgeRule("quote-10", "Gardien des Paroles", "Sauvegarder 10 citations", "📜", BadgeCategory.SOCIAL, 10),
    # Challenges
    BadgeRule("challenge-1", "Premier Pas", "Compléter 1 défi", "🎯", BadgeCategory.CHALLENGE, 1),
    BadgeRule("challenge-3", "Challenger", "Compléter 3 défis", "🥉", BadgeCategory.CHALLENGE, 3),
    BadgeRule("challenge-5", "Compétiteur", "Compléter 5 défis", "🥈", BadgeCategory.CHALLENGE, 5),
    BadgeRule("challenge-10", "Champion", "Compléter 10 défis", "🥇", BadgeCategory.CHALLENGE, 10),
    BadgeRule(
        ALL_PREDEFINED_KEY,
        "Maître des Défis",
        "Compléter tous les défis prédéfinis",
        "🏆",
        BadgeCategory.CHALLENGE,
    ),
    # Special
    BadgeRule("genre-5", "Explorateur", "Lire 5 genres différents", "🧭", BadgeCategory.SPECIAL, 5),
    BadgeRule("long-book", "Pavé dans la Mare", "Lire un livre de +500 pages", "🧱", BadgeCategory.SPECIAL, 500),
    BadgeRule("fast-read", "Lecture Éclair", "Lire un livre en moins de 3 jours", "⚡", BadgeCategory.SPECIAL, 3),
    BadgeRule("author-3", "Fidèle", "Lire 3 livres du même auteur", "🐕", BadgeCategory.SPECIAL, 3),
    BadgeRule("create-challenge", "Créateur", "Créer un défi personnalisé", "✨", BadgeCategory.SPECIAL),
)


def get_rule(key: str) -> Optional[BadgeRule]:
    """Look up a rule by key."""
    for rule in BADGES:
        if rule.key == key:
            return rule
    return None


def rules_by_category() -> dict[BadgeCategory, list[BadgeRule]]:
    """Group the rule table by category, preserving table order."""
    grouped: dict[BadgeCategory, list[BadgeRule]] = {c: [] for c in BadgeCategory}
    for rule in BADGES:
        grouped[rule.category].append(rule)
    return grouped
