"""Reading streaks module."""

from .calculator import StreakCalculator

__all__ = ["StreakCalculator"]
