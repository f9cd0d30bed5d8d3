"""Fixed per-day slot grid and slot identity.

A slot is identified by (staff_id, date, time_range). The grid is the
same for every staff member: fixed-length slots laid out inside the
configured business windows. Times are wall-clock times interpreted
as UTC.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

_RANGE_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True, order=True)
class TimeRange:
    """Half-open wall-clock interval [start, end) within one day."""

    start: time
    end: time

    @classmethod
    def parse(cls, value: str) -> TimeRange:
        """Parse "09:00-09:30" (spaces around the dash are tolerated).

        Args:
            value: Time range string.

        Returns:
            Parsed TimeRange.

        Raises:
            ValueError: If the string is malformed or end <= start.
        """
        match = _RANGE_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid time range: {value!r}")
        h1, m1, h2, m2 = (int(g) for g in match.groups())
        try:
            start, end = time(h1, m1), time(h2, m2)
        except ValueError:
            raise ValueError(f"Invalid time range: {value!r}") from None
        if end <= start:
            raise ValueError(f"Time range must end after it starts: {value!r}")
        return cls(start=start, end=end)

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True, order=True)
class SlotKey:
    """Identity of one slot on one staff member's calendar."""

    staff_id: str
    date: date
    time_range: TimeRange

    @property
    def starts_at(self) -> datetime:
        """UTC datetime at which the slot begins."""
        return datetime.combine(self.date, self.time_range.start, tzinfo=UTC)

    def __str__(self) -> str:
        return f"{self.staff_id}/{self.date.isoformat()}/{self.time_range}"


class SlotGrid:
    """Enumerable grid of time ranges for a single day."""

    def __init__(self, windows: list[str], slot_minutes: int) -> None:
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        parsed = sorted(TimeRange.parse(w) for w in windows)
        for earlier, later in zip(parsed, parsed[1:]):
            if later.start < earlier.end:
                raise ValueError(f"Business windows overlap: {earlier} and {later}")
        self.slot_minutes = slot_minutes
        self.time_ranges: tuple[TimeRange, ...] = tuple(
            tr for window in parsed for tr in _split_window(window, slot_minutes)
        )
        self._index = frozenset(self.time_ranges)

    def __len__(self) -> int:
        return len(self.time_ranges)

    def contains(self, time_range: TimeRange) -> bool:
        """Return True if the time range is one of the grid positions."""
        return time_range in self._index

    def keys_for(self, staff_id: str, day: date) -> list[SlotKey]:
        """Return every slot key of the grid for a staff member and day."""
        return [SlotKey(staff_id, day, tr) for tr in self.time_ranges]


def _split_window(window: TimeRange, slot_minutes: int) -> list[TimeRange]:
    """Cut a business window into consecutive fixed-length slots.

    A trailing remainder shorter than one slot is dropped.
    """
    step = timedelta(minutes=slot_minutes)
    anchor = date(2000, 1, 1)
    cursor = datetime.combine(anchor, window.start)
    end = datetime.combine(anchor, window.end)
    ranges: list[TimeRange] = []
    while cursor + step <= end:
        ranges.append(TimeRange(cursor.time(), (cursor + step).time()))
        cursor += step
    return ranges
