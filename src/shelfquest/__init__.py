"""Reading challenges, streaks and achievement badges over a personal book log."""

__version__ = "0.1.0"
