"""Time range value type and the overlap predicate shared by all conflict checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Interval:
    """A closed time range ``[start, end]``.

    Both bounds are inclusive, so two intervals that merely touch (one ends at
    the instant the other starts) overlap. Zero-length intervals are allowed.
    """

    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return (
            # other begins during self
            (self.start <= other.start and other.start <= self.end)
            # other ends during self
            or (self.start <= other.end and other.end <= self.end)
            # self lies entirely inside other
            or (other.start <= self.start and self.end <= other.end)
            # other lies entirely inside self
            or (self.start <= other.start and other.end <= self.end)
        )


def as_utc(dt: datetime) -> datetime:
    """Stored times are UTC; some drivers hand them back naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
