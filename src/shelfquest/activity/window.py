"""Date windows bounding activity queries."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, field_validator


class DateWindow(BaseModel):
    """Inclusive date range progress is computed over. None means unbounded."""

    start: Optional[date] = None
    end: Optional[date] = None

    @field_validator("end")
    @classmethod
    def end_after_start(cls, v, info):
        """Validate end date is after start date."""
        start = info.data.get("start")
        if v and start and v < start:
            raise ValueError("end must be after start")
        return v

    @property
    def start_iso(self) -> Optional[str]:
        return self.start.isoformat() if self.start else None

    @property
    def end_iso(self) -> Optional[str]:
        return self.end.isoformat() if self.end else None

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        """Check whether a day falls inside the window."""
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True
