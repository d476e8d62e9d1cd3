"""Half-open time-of-day intervals used for slot conflict checks."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from .errors import ValidationError


@dataclass(frozen=True)
class TimeRange:
    """A slot ``[start, start + duration)`` on a single calendar day.

    Bounds are kept as minutes since midnight; a range running past
    midnight is not wrapped, so it only overlaps ranges of the same day.
    """

    start: dt.time
    duration: int  # minutes

    def __post_init__(self):
        if self.start.second or self.start.microsecond:
            raise ValidationError(f"start time must be on a whole minute, got {self.start.isoformat()}")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int):
            raise ValidationError(f"duration must be an integer number of minutes, got {self.duration!r}")
        if self.duration <= 0:
            raise ValidationError(f"duration must be positive, got {self.duration}")

    @classmethod
    def parse(cls, value: str, duration: int) -> TimeRange:
        """Build a range from an ``HH:MM`` or ``HH:MM:00`` start string."""
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                start = dt.datetime.strptime(value, fmt).time()
                break
            except ValueError:
                continue
        else:
            raise ValidationError(f"invalid start time {value!r}, expected HH:MM")
        return cls(start, duration)

    @property
    def start_minute(self) -> int:
        return self.start.hour * 60 + self.start.minute

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration

    def overlaps(self, other: TimeRange) -> bool:
        return overlaps(self, other)

    def __str__(self) -> str:
        end = self.end_minute
        return f"{self.start:%H:%M}-{end // 60:02d}:{end % 60:02d}"


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """True iff the two half-open ranges share at least one minute."""
    return a.start_minute < b.end_minute and b.start_minute < a.end_minute
