"""Achievement badges module.

Provides functionality for:
- The static badge rule table
- Evaluating aggregate reading facts against the rules
- Idempotently awarding unlocked badges
"""

from .evaluator import BadgeEvaluator
from .models import Badge
from .rules import BADGES, BadgeCategory, BadgeRule
from .schemas import BadgeBoardEntry, BadgeFacts

__all__ = [
    "BadgeEvaluator",
    "Badge",
    "BADGES",
    "BadgeCategory",
    "BadgeRule",
    "BadgeBoardEntry",
    "BadgeFacts",
]
