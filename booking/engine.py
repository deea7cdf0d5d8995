"""Resource, booking and unavailability use cases.

Every function returns a JSON-ready result dict (``success``, ``code``,
``reason`` plus the payload). Writes that need admission control open their
own transaction through ``db.transaction.transaction`` and hand the session
to the controllers in ``booking.admission``.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from booking.admission import (
    AdmissionDecision,
    check_booking_admission,
    check_unavailability_admission,
    lock_resource,
)
from booking.availability import RecordKind, overlap_query, slot_occupancy
from booking.errors import BookingError, InternalError, InvalidRequest, RecordNotFound, ResourceNotFound, error_code, error_message
from booking.interval import Interval, as_utc
from booking.models import Booking, Organization, Resource, ResourceSlot, Unavailability
from booking.schema import (
    MAX_AVAILABILITY_SLOTS,
    AvailabilityRequest,
    AvailabilityResult,
    BookingCreateRequest,
    BookingFilter,
    BookingItem,
    BookingListResult,
    BookingResult,
    BookingUpdateRequest,
    ErrorParam,
    OperatingSlot,
    OrganizationCreateRequest,
    OrganizationItem,
    OrganizationResult,
    ResourceCreateRequest,
    ResourceItem,
    ResourceListResult,
    ResourceResult,
    ResourceUpdateRequest,
    Result,
    SlotAvailability,
    UnavailabilityCreateRequest,
    UnavailabilityFilter,
    UnavailabilityItem,
    UnavailabilityListResult,
    UnavailabilityResult,
    UnavailabilityUpdateRequest,
    WEEKDAYS,
    count_slots,
)
from db.transaction import transaction

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def logged(method: str) -> Callable:
    """Log the outcome and duration of a use case."""

    def decorator(fn: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> dict[str, Any]:
            begin = time.perf_counter()
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                logger.exception(
                    "method=%s success=False code=%s took_ms=%.1f",
                    method,
                    error_code(exc),
                    (time.perf_counter() - begin) * 1000,
                )
                raise
            logger.info(
                "method=%s success=%s code=%s took_ms=%.1f",
                method,
                result.get("success"),
                result.get("code"),
                (time.perf_counter() - begin) * 1000,
            )
            return result

        return wrapper

    return decorator


def _to_utc(dt: datetime, tz_name: str) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)

    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")

    return dt.replace(tzinfo=zone).astimezone(timezone.utc)


def _resolve_interval(start_time: datetime, end_time: datetime, tz_name: str) -> Interval:
    interval = Interval(_to_utc(start_time, tz_name), _to_utc(end_time, tz_name))
    if interval.end < interval.start:
        raise InvalidRequest("end_time must not be earlier than start_time.")
    return interval


def _parse(model: type[M], payload: Any) -> M:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequest.from_errors(exc.errors()) from exc


def _failure(result_model: type[Result], exc: BookingError) -> dict[str, Any]:
    return result_model(
        success=False,
        code=error_code(exc),
        title=exc.title,
        reason=error_message(exc),
        params=[ErrorParam(**param) for param in exc.params],
    ).model_dump(mode="json")


def _raise_if_rejected(decision: AdmissionDecision) -> None:
    if decision.admitted:
        return
    logger.info("Admission rejected: %s", decision.reason)
    raise decision.conflict


def _page(limit: Optional[int], default_limit: int, max_limit: int) -> int:
    if limit is None:
        return default_limit
    return min(limit, max_limit)


def _read(db_factory: sessionmaker, fn: Callable[[Session], Any]) -> Any:
    with db_factory() as db:
        try:
            return fn(db)
        except SQLAlchemyError as exc:
            logger.exception("Read query failed")
            raise InternalError() from exc


def _resource_item(resource: Resource) -> ResourceItem:
    return ResourceItem(
        resource_id=resource.id,
        organization_id=resource.organization_id,
        name=resource.name,
        description=resource.description,
        timezone=resource.timezone,
        capacity=resource.capacity,
        slots=[
            OperatingSlot(day=slot.day, start_time=slot.start_time, end_time=slot.end_time, quantity=slot.quantity)
            for slot in sorted(resource.slots, key=lambda slot: (WEEKDAYS.index(slot.day), slot.start_time))
        ],
    )


def _resource_slots(slots: list[OperatingSlot]) -> list[ResourceSlot]:
    return [ResourceSlot(**slot.model_dump()) for slot in slots]


def _booking_item(booking: Booking) -> BookingItem:
    return BookingItem(
        booking_id=booking.id,
        resource_id=booking.resource_id,
        status=booking.status,
        start_time=as_utc(booking.start_time),
        end_time=as_utc(booking.end_time),
        metadata=dict(booking.details or {}),
        created_at=as_utc(booking.created_at) if booking.created_at else None,
        updated_at=as_utc(booking.updated_at) if booking.updated_at else None,
    )


def _unavailability_item(unavailability: Unavailability) -> UnavailabilityItem:
    return UnavailabilityItem(
        unavailability_id=unavailability.id,
        resource_id=unavailability.resource_id,
        start_time=as_utc(unavailability.start_time),
        end_time=as_utc(unavailability.end_time),
    )


def _find_resource(db: Session, organization_id: str, resource_id: str) -> Resource:
    resource = db.scalar(
        select(Resource).where(
            Resource.id == resource_id,
            Resource.organization_id == organization_id,
        )
    )
    if resource is None:
        raise ResourceNotFound()
    return resource


def _find_booking(db: Session, organization_id: str, booking_id: str) -> Booking:
    booking = db.scalar(
        select(Booking)
        .join(Resource, Resource.id == Booking.resource_id)
        .where(
            Booking.id == booking_id,
            Resource.organization_id == organization_id,
        )
    )
    if booking is None:
        raise RecordNotFound.wrap("booking")
    return booking


def _find_unavailability(db: Session, organization_id: str, resource_id: str, unavailability_id: str) -> Unavailability:
    unavailability = db.scalar(
        select(Unavailability)
        .join(Resource, Resource.id == Unavailability.resource_id)
        .where(
            Unavailability.id == unavailability_id,
            Unavailability.resource_id == resource_id,
            Resource.organization_id == organization_id,
        )
    )
    if unavailability is None:
        raise RecordNotFound.wrap("unavailability")
    return unavailability


# Organizations


@logged("create_organization")
def create_organization(db_factory: sessionmaker, payload: Any) -> dict[str, Any]:
    try:
        request = _parse(OrganizationCreateRequest, payload)
        with transaction(db_factory) as tx:
            organization = Organization(name=request.name)
            tx.session.add(organization)
            tx.session.flush()
            item = OrganizationItem(organization_id=organization.id, name=organization.name)
    except BookingError as exc:
        return _failure(OrganizationResult, exc)
    return OrganizationResult(success=True, organization=item).model_dump(mode="json")


# Resources


@logged("create_resource")
def create_resource(db_factory: sessionmaker, organization_id: str, payload: Any) -> dict[str, Any]:
    try:
        request = _parse(ResourceCreateRequest, payload)
        with transaction(db_factory) as tx:
            db = tx.session
            if db.get(Organization, organization_id) is None:
                raise RecordNotFound.wrap("organization")
            resource = Resource(
                organization_id=organization_id,
                name=request.name,
                description=request.description,
                timezone=request.timezone,
                capacity=request.capacity,
                slots=_resource_slots(request.slots),
            )
            db.add(resource)
            db.flush()
            item = _resource_item(resource)
    except BookingError as exc:
        return _failure(ResourceResult, exc)
    return ResourceResult(success=True, resource=item).model_dump(mode="json")


@logged("find_resource_by_id")
def find_resource_by_id(db_factory: sessionmaker, organization_id: str, resource_id: str) -> dict[str, Any]:
    try:
        item = _read(db_factory, lambda db: _resource_item(_find_resource(db, organization_id, resource_id)))
    except BookingError as exc:
        return _failure(ResourceResult, exc)
    return ResourceResult(success=True, resource=item).model_dump(mode="json")


@logged("find_resources")
def find_resources(
    db_factory: sessionmaker,
    organization_id: str,
    *,
    offset: int = 0,
    limit: Optional[int] = None,
    default_limit: int,
    max_limit: int,
) -> dict[str, Any]:
    def query(db: Session) -> tuple[list[ResourceItem], int]:
        stmt = select(Resource).where(Resource.organization_id == organization_id)
        total_items = int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        page = db.scalars(
            stmt.options(selectinload(Resource.slots))
            .order_by(Resource.name.asc(), Resource.id.asc())
            .offset(max(offset, 0))
            .limit(_page(limit, default_limit, max_limit))
        )
        return [_resource_item(resource) for resource in page], total_items

    try:
        items, total_items = _read(db_factory, query)
    except BookingError as exc:
        return _failure(ResourceListResult, exc)
    return ResourceListResult(success=True, resources=items, total_items=total_items).model_dump(mode="json")


@logged("update_resource")
def update_resource(db_factory: sessionmaker, organization_id: str, resource_id: str, payload: Any) -> dict[str, Any]:
    try:
        request = _parse(ResourceUpdateRequest, payload)
        with transaction(db_factory) as tx:
            resource = lock_resource(tx.session, organization_id=organization_id, resource_id=resource_id)
            if request.name is not None:
                resource.name = request.name
            if request.description is not None:
                resource.description = request.description
            if request.timezone is not None:
                resource.timezone = request.timezone
            if "capacity" in request.model_fields_set:
                resource.capacity = request.capacity
            if request.slots is not None:
                resource.slots = _resource_slots(request.slots)
            tx.session.flush()
            item = _resource_item(resource)
    except BookingError as exc:
        return _failure(ResourceResult, exc)
    return ResourceResult(success=True, resource=item).model_dump(mode="json")


@logged("delete_resource")
def delete_resource(db_factory: sessionmaker, organization_id: str, resource_id: str) -> dict[str, Any]:
    try:
        with transaction(db_factory) as tx:
            resource = lock_resource(tx.session, organization_id=organization_id, resource_id=resource_id)
            tx.session.delete(resource)
    except BookingError as exc:
        return _failure(Result, exc)
    return Result(success=True).model_dump(mode="json")


# Bookings


@logged("create_booking")
def create_booking(
    db_factory: sessionmaker,
    organization_id: str,
    payload: Any,
    *,
    timeout_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, Any]:
    try:
        request = _parse(BookingCreateRequest, payload)
        with transaction(db_factory, timeout_seconds=timeout_seconds, cancel_event=cancel_event) as tx:
            db = tx.session
            resource = lock_resource(db, organization_id=organization_id, resource_id=request.resource_id)
            interval = _resolve_interval(request.start_time, request.end_time, resource.timezone)

            _raise_if_rejected(
                check_booking_admission(
                    db,
                    organization_id=organization_id,
                    resource_id=resource.id,
                    interval=interval,
                )
            )
            tx.checkpoint()

            booking = Booking(
                resource_id=resource.id,
                status=request.status,
                start_time=interval.start,
                end_time=interval.end,
                details=dict(request.metadata),
            )
            db.add(booking)
            db.flush()
            item = _booking_item(booking)
    except BookingError as exc:
        return _failure(BookingResult, exc)
    return BookingResult(success=True, booking=item).model_dump(mode="json")


@logged("find_booking_by_id")
def find_booking_by_id(db_factory: sessionmaker, organization_id: str, booking_id: str) -> dict[str, Any]:
    try:
        item = _read(db_factory, lambda db: _booking_item(_find_booking(db, organization_id, booking_id)))
    except BookingError as exc:
        return _failure(BookingResult, exc)
    return BookingResult(success=True, booking=item).model_dump(mode="json")


@logged("find_bookings")
def find_bookings(
    db_factory: sessionmaker,
    organization_id: str,
    payload: Any = None,
    *,
    default_limit: int,
    max_limit: int,
) -> dict[str, Any]:
    def query(db: Session, booking_filter: BookingFilter) -> tuple[list[BookingItem], int]:
        stmt = (
            select(Booking)
            .join(Resource, Resource.id == Booking.resource_id)
            .where(Resource.organization_id == organization_id)
        )
        if booking_filter.id is not None:
            stmt = stmt.where(Booking.id == booking_filter.id)
        if booking_filter.resource_id is not None:
            stmt = stmt.where(Booking.resource_id == booking_filter.resource_id)
        if booking_filter.status is not None:
            stmt = stmt.where(Booking.status == booking_filter.status)
        if booking_filter.start_time_after is not None:
            stmt = stmt.where(Booking.start_time >= _to_utc(booking_filter.start_time_after, "UTC"))
        if booking_filter.end_time_before is not None:
            stmt = stmt.where(Booking.end_time <= _to_utc(booking_filter.end_time_before, "UTC"))

        total_items = int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        page = db.scalars(
            stmt.order_by(Booking.start_time.asc(), Booking.id.asc())
            .offset(booking_filter.offset)
            .limit(_page(booking_filter.limit, default_limit, max_limit))
        )
        return [_booking_item(booking) for booking in page], total_items

    try:
        booking_filter = _parse(BookingFilter, payload or {})
        items, total_items = _read(db_factory, lambda db: query(db, booking_filter))
    except BookingError as exc:
        return _failure(BookingListResult, exc)
    return BookingListResult(success=True, bookings=items, total_items=total_items).model_dump(mode="json")


@logged("update_booking")
def update_booking(
    db_factory: sessionmaker,
    organization_id: str,
    booking_id: str,
    payload: Any,
    *,
    timeout_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, Any]:
    try:
        request = _parse(BookingUpdateRequest, payload)
        with transaction(db_factory, timeout_seconds=timeout_seconds, cancel_event=cancel_event) as tx:
            db = tx.session
            booking = _find_booking(db, organization_id, booking_id)

            if request.start_time is not None or request.end_time is not None:
                resource = lock_resource(db, organization_id=organization_id, resource_id=booking.resource_id)
                interval = _resolve_interval(
                    request.start_time if request.start_time is not None else as_utc(booking.start_time),
                    request.end_time if request.end_time is not None else as_utc(booking.end_time),
                    resource.timezone,
                )
                _raise_if_rejected(
                    check_booking_admission(
                        db,
                        organization_id=organization_id,
                        resource_id=resource.id,
                        interval=interval,
                        exclude_booking_ids={booking.id},
                    )
                )
                booking.start_time = interval.start
                booking.end_time = interval.end

            if request.status is not None:
                booking.status = request.status
            if request.metadata is not None:
                booking.details = dict(request.metadata)

            tx.checkpoint()
            db.flush()
            item = _booking_item(booking)
    except BookingError as exc:
        return _failure(BookingResult, exc)
    return BookingResult(success=True, booking=item).model_dump(mode="json")


@logged("delete_booking")
def delete_booking(db_factory: sessionmaker, organization_id: str, booking_id: str) -> dict[str, Any]:
    # Removing a booking only lowers occupancy, so no admission check.
    try:
        with transaction(db_factory) as tx:
            tx.session.delete(_find_booking(tx.session, organization_id, booking_id))
    except BookingError as exc:
        return _failure(Result, exc)
    return Result(success=True).model_dump(mode="json")


# Unavailabilities


@logged("create_unavailability")
def create_unavailability(
    db_factory: sessionmaker,
    organization_id: str,
    resource_id: str,
    payload: Any,
    *,
    timeout_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, Any]:
    try:
        request = _parse(UnavailabilityCreateRequest, payload)
        with transaction(db_factory, timeout_seconds=timeout_seconds, cancel_event=cancel_event) as tx:
            db = tx.session
            resource = lock_resource(db, organization_id=organization_id, resource_id=resource_id)
            interval = _resolve_interval(request.start_time, request.end_time, resource.timezone)

            _raise_if_rejected(
                check_unavailability_admission(
                    db,
                    organization_id=organization_id,
                    resource_id=resource.id,
                    interval=interval,
                )
            )
            tx.checkpoint()

            unavailability = Unavailability(
                resource_id=resource.id,
                organization_id=resource.organization_id,
                start_time=interval.start,
                end_time=interval.end,
            )
            db.add(unavailability)
            db.flush()
            item = _unavailability_item(unavailability)
    except BookingError as exc:
        return _failure(UnavailabilityResult, exc)
    return UnavailabilityResult(success=True, unavailability=item).model_dump(mode="json")


@logged("find_unavailability_by_id")
def find_unavailability_by_id(
    db_factory: sessionmaker,
    organization_id: str,
    resource_id: str,
    unavailability_id: str,
) -> dict[str, Any]:
    try:
        item = _read(
            db_factory,
            lambda db: _unavailability_item(_find_unavailability(db, organization_id, resource_id, unavailability_id)),
        )
    except BookingError as exc:
        return _failure(UnavailabilityResult, exc)
    return UnavailabilityResult(success=True, unavailability=item).model_dump(mode="json")


@logged("find_unavailabilities")
def find_unavailabilities(
    db_factory: sessionmaker,
    organization_id: str,
    resource_id: str,
    payload: Any = None,
    *,
    default_limit: int,
    max_limit: int,
) -> dict[str, Any]:
    def query(db: Session, unavailability_filter: UnavailabilityFilter) -> tuple[list[UnavailabilityItem], int]:
        _find_resource(db, organization_id, resource_id)
        stmt = select(Unavailability).where(Unavailability.resource_id == resource_id)
        if unavailability_filter.id is not None:
            stmt = stmt.where(Unavailability.id == unavailability_filter.id)
        if unavailability_filter.start_time_after is not None:
            stmt = stmt.where(Unavailability.start_time >= _to_utc(unavailability_filter.start_time_after, "UTC"))
        if unavailability_filter.end_time_before is not None:
            stmt = stmt.where(Unavailability.end_time <= _to_utc(unavailability_filter.end_time_before, "UTC"))

        total_items = int(db.scalar(select(func.count()).select_from(stmt.subquery())) or 0)
        page = db.scalars(
            stmt.order_by(Unavailability.start_time.asc(), Unavailability.id.asc())
            .offset(unavailability_filter.offset)
            .limit(_page(unavailability_filter.limit, default_limit, max_limit))
        )
        return [_unavailability_item(unavailability) for unavailability in page], total_items

    try:
        unavailability_filter = _parse(UnavailabilityFilter, payload or {})
        items, total_items = _read(db_factory, lambda db: query(db, unavailability_filter))
    except BookingError as exc:
        return _failure(UnavailabilityListResult, exc)
    return UnavailabilityListResult(
        success=True,
        unavailabilities=items,
        total_items=total_items,
    ).model_dump(mode="json")


@logged("update_unavailability")
def update_unavailability(
    db_factory: sessionmaker,
    organization_id: str,
    resource_id: str,
    unavailability_id: str,
    payload: Any,
    *,
    timeout_seconds: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict[str, Any]:
    try:
        request = _parse(UnavailabilityUpdateRequest, payload)
        with transaction(db_factory, timeout_seconds=timeout_seconds, cancel_event=cancel_event) as tx:
            db = tx.session
            resource = lock_resource(db, organization_id=organization_id, resource_id=resource_id)
            unavailability = _find_unavailability(db, organization_id, resource_id, unavailability_id)
            interval = _resolve_interval(request.start_time, request.end_time, resource.timezone)

            _raise_if_rejected(
                check_unavailability_admission(
                    db,
                    organization_id=organization_id,
                    resource_id=resource.id,
                    interval=interval,
                    exclude_unavailability_ids={unavailability.id},
                )
            )
            tx.checkpoint()

            unavailability.start_time = interval.start
            unavailability.end_time = interval.end
            db.flush()
            item = _unavailability_item(unavailability)
    except BookingError as exc:
        return _failure(UnavailabilityResult, exc)
    return UnavailabilityResult(success=True, unavailability=item).model_dump(mode="json")


@logged("delete_unavailability")
def delete_unavailability(
    db_factory: sessionmaker,
    organization_id: str,
    resource_id: str,
    unavailability_id: str,
) -> dict[str, Any]:
    try:
        with transaction(db_factory) as tx:
            tx.session.delete(_find_unavailability(tx.session, organization_id, resource_id, unavailability_id))
    except BookingError as exc:
        return _failure(Result, exc)
    return Result(success=True).model_dump(mode="json")


# Availability


@logged("find_availability")
def find_availability(db_factory: sessionmaker, organization_id: str, resource_id: str, payload: Any) -> dict[str, Any]:
    def query(db: Session, request: AvailabilityRequest) -> AvailabilityResult:
        resource = _find_resource(db, organization_id, resource_id)
        window = _resolve_interval(request.start_time, request.end_time, resource.timezone)
        if count_slots(window.start, window.end, request.slot_length_minutes) > MAX_AVAILABILITY_SLOTS:
            raise InvalidRequest(f"At most {MAX_AVAILABILITY_SLOTS} slots are allowed per request.")
        bounds = {"resource_id": resource.id, "start_time": window.start, "end_time": window.end}
        bookings = list(db.scalars(overlap_query(RecordKind.BOOKING, **bounds)))
        unavailabilities = list(db.scalars(overlap_query(RecordKind.UNAVAILABILITY, **bounds)))

        slots = slot_occupancy(
            bookings=bookings,
            unavailabilities=unavailabilities,
            start_time=window.start,
            end_time=window.end,
            slot_length_minutes=request.slot_length_minutes,
            capacity=resource.capacity,
        )
        return AvailabilityResult(
            success=True,
            resource_id=resource.id,
            capacity=resource.capacity,
            slot_length_minutes=request.slot_length_minutes,
            slots=[SlotAvailability(**slot) for slot in slots],
        )

    try:
        request = _parse(AvailabilityRequest, payload)
        result = _read(db_factory, lambda db: query(db, request))
    except BookingError as exc:
        return _failure(AvailabilityResult, exc)
    return result.model_dump(mode="json")
