"""Admission control for bookings and unavailability windows.

Both checks must run inside an open transaction owned by the caller (see
``db.transaction``). The resource row is locked first so that concurrent
admissions against the same resource queue up behind each other and the
count they observe cannot go stale before the caller writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.availability import RecordKind, overlap_count
from booking.capacity import CapacityPolicy
from booking.errors import BookingConflict, BookingError, InternalError, ResourceNotFound, UnavailabilityConflict
from booking.interval import Interval
from booking.models import Resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    admitted: bool
    conflict: Optional[BookingError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.conflict.detail if self.conflict else None


ADMITTED = AdmissionDecision(admitted=True)


def lock_resource(db: Session, *, organization_id: str, resource_id: str) -> Resource:
    stmt = (
        select(Resource)
        .where(
            Resource.id == resource_id,
            Resource.organization_id == organization_id,
        )
        .with_for_update()
    )
    resource = db.scalar(stmt)
    if resource is None:
        raise ResourceNotFound()
    return resource


def _count(db: Session, kind: RecordKind, resource_id: str, interval: Interval, exclude_ids: Iterable[str] = ()) -> int:
    try:
        return overlap_count(
            db,
            kind,
            resource_id=resource_id,
            start_time=interval.start,
            end_time=interval.end,
            exclude_ids=exclude_ids,
        )
    except SQLAlchemyError as exc:
        logger.exception("Overlap count failed for resource %s", resource_id)
        raise InternalError() from exc


def check_booking_admission(
    db: Session,
    *,
    organization_id: str,
    resource_id: str,
    interval: Interval,
    exclude_booking_ids: Iterable[str] = (),
) -> AdmissionDecision:
    """Decide whether a booking for ``interval`` fits on the resource.

    Unavailability windows block the booking regardless of capacity. With a
    capacity set, the booking is rejected once the overlapping bookings
    (minus ``exclude_booking_ids``) already fill it.

    Raises ``ResourceNotFound`` or ``InternalError``; rejections are returned.
    """
    try:
        resource = lock_resource(db, organization_id=organization_id, resource_id=resource_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load resource %s", resource_id)
        raise InternalError() from exc

    if _count(db, RecordKind.UNAVAILABILITY, resource.id, interval) > 0:
        return AdmissionDecision(
            admitted=False,
            conflict=UnavailabilityConflict(
                "Requested booking overlaps a period during which the resource is unavailable."
            ),
        )

    policy = CapacityPolicy.of(resource.capacity)
    if policy.unlimited:
        return ADMITTED

    booked = _count(db, RecordKind.BOOKING, resource.id, interval, exclude_booking_ids)
    if not policy.admits(booked):
        return AdmissionDecision(
            admitted=False,
            conflict=BookingConflict("Maximum bookings for specified resource reached."),
        )
    return ADMITTED


def check_unavailability_admission(
    db: Session,
    *,
    organization_id: str,
    resource_id: str,
    interval: Interval,
    exclude_unavailability_ids: Iterable[str] = (),
) -> AdmissionDecision:
    """Decide whether an unavailability window may be placed on the resource.

    Windows never stack: any overlap with another window is a conflict, and a
    window may not cover an existing booking.
    """
    try:
        resource = lock_resource(db, organization_id=organization_id, resource_id=resource_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load resource %s", resource_id)
        raise InternalError() from exc

    if _count(db, RecordKind.UNAVAILABILITY, resource.id, interval, exclude_unavailability_ids) > 0:
        return AdmissionDecision(
            admitted=False,
            conflict=UnavailabilityConflict(
                "Requested unavailability would conflict with existing unavailabilities. "
                "Check start and end times for potential overlap."
            ),
        )

    if _count(db, RecordKind.BOOKING, resource.id, interval) > 0:
        return AdmissionDecision(
            admitted=False,
            conflict=BookingConflict("Requested unavailability overlaps existing bookings for this resource."),
        )
    return ADMITTED
