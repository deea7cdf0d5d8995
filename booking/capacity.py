"""Resource admission policy: unlimited, or a fixed number of simultaneous bookings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CapacityPolicy:
    limit: Optional[int] = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"capacity must be at least 1, got {self.limit}.")

    @classmethod
    def of(cls, capacity: Optional[int]) -> "CapacityPolicy":
        return cls(limit=capacity)

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def admits(self, overlapping: int) -> bool:
        """Whether one more booking fits alongside ``overlapping`` existing ones."""
        if self.limit is None:
            return True
        return overlapping < self.limit

    def remaining(self, overlapping: int) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - overlapping, 0)
