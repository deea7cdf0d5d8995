"""Overlap queries against bookings and unavailability windows."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional, Union

from sqlalchemy import ColumnElement, Select, and_, func, or_, select
from sqlalchemy.orm import Session

from booking.capacity import CapacityPolicy
from booking.interval import Interval, as_utc
from booking.models import Booking, Unavailability


class RecordKind(str, Enum):
    BOOKING = "BOOKING"
    UNAVAILABILITY = "UNAVAILABILITY"

    @property
    def model(self) -> type[Union[Booking, Unavailability]]:
        return Booking if self is RecordKind.BOOKING else Unavailability


def overlap_clause(model, *, start_time: datetime, end_time: datetime) -> ColumnElement[bool]:
    """SQL form of ``Interval.overlaps`` with inclusive bounds."""
    return or_(
        # candidate begins during an existing record
        and_(model.start_time <= start_time, model.end_time >= start_time),
        # candidate ends during an existing record
        and_(model.start_time <= end_time, model.end_time >= end_time),
        # candidate is entirely during an existing record
        and_(model.start_time <= start_time, model.end_time >= end_time),
        # existing record is entirely during the candidate
        and_(model.start_time >= start_time, model.end_time <= end_time),
    )


def overlap_query(
    kind: RecordKind,
    *,
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    exclude_ids: Iterable[str] = (),
) -> Select:
    model = kind.model
    stmt = select(model).where(
        model.resource_id == resource_id,
        overlap_clause(model, start_time=start_time, end_time=end_time),
    )
    excluded = [record_id for record_id in exclude_ids if record_id]
    if excluded:
        stmt = stmt.where(model.id.not_in(excluded))
    return stmt


def overlap_count(
    db: Session,
    kind: RecordKind,
    *,
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    exclude_ids: Iterable[str] = (),
) -> int:
    """Count records of ``kind`` on the resource overlapping the candidate.

    Runs inside the caller's transaction; the result is only meaningful while
    that transaction (and whatever lock it holds) is open.
    """
    model = kind.model
    stmt = (
        select(func.count())
        .select_from(model)
        .where(
            model.resource_id == resource_id,
            overlap_clause(model, start_time=start_time, end_time=end_time),
        )
    )
    excluded = [record_id for record_id in exclude_ids if record_id]
    if excluded:
        stmt = stmt.where(model.id.not_in(excluded))
    return int(db.scalar(stmt) or 0)


def split_into_slots(*, start_time: datetime, end_time: datetime, slot_length_minutes: int) -> list[tuple[datetime, datetime]]:
    slots: list[tuple[datetime, datetime]] = []
    cursor = start_time
    slot_delta = timedelta(minutes=slot_length_minutes)
    while cursor < end_time:
        next_cursor = min(cursor + slot_delta, end_time)
        slots.append((cursor, next_cursor))
        cursor = next_cursor
    return slots


def slot_occupancy(
    *,
    bookings: Iterable[Booking],
    unavailabilities: Iterable[Unavailability],
    start_time: datetime,
    end_time: datetime,
    slot_length_minutes: int,
    capacity: Optional[int],
) -> list[dict]:
    policy = CapacityPolicy.of(capacity)
    booking_intervals = [Interval(as_utc(b.start_time), as_utc(b.end_time)) for b in bookings]
    blackout_intervals = [Interval(as_utc(u.start_time), as_utc(u.end_time)) for u in unavailabilities]

    occupancy: list[dict] = []
    for slot_start, slot_end in split_into_slots(
        start_time=start_time,
        end_time=end_time,
        slot_length_minutes=slot_length_minutes,
    ):
        slot = Interval(slot_start, slot_end)
        booked = sum(1 for interval in booking_intervals if interval.overlaps(slot))
        blocked = any(interval.overlaps(slot) for interval in blackout_intervals)
        occupancy.append(
            {
                "slot_start": slot_start,
                "slot_end": slot_end,
                "booked": booked,
                "unavailable": blocked,
                "remaining_capacity": policy.remaining(booked),
                "available": not blocked and policy.admits(booked),
            }
        )
    return occupancy
