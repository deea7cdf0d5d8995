"""Pydantic schemas for resource, booking and unavailability flows."""

from __future__ import annotations

import math
from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _check_window(start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
    if start_time is None or end_time is None:
        return
    # mixed naive/aware pairs are checked again once resolved to UTC
    if (start_time.tzinfo is None) != (end_time.tzinfo is None):
        return
    if end_time < start_time:
        raise ValueError("end_time must not be earlier than start_time.")


# Upper bound on slots in one availability listing; a day of one-minute slots fits.
MAX_AVAILABILITY_SLOTS = 2_000


def count_slots(start_time: datetime, end_time: datetime, slot_length_minutes: int) -> int:
    if end_time <= start_time:
        return 0
    return math.ceil((end_time - start_time).total_seconds() / (slot_length_minutes * 60))


def _validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {value}") from exc
    return value


class OrganizationCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class OrganizationItem(BaseModel):
    organization_id: str
    name: str


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _parse_clock(value: str) -> time:
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError as exc:
        raise ValueError("Must be a valid time in the format HH:MM") from exc


def _check_slots(slots: list["OperatingSlot"]) -> None:
    by_day: dict[str, list[OperatingSlot]] = {}
    for slot in slots:
        by_day.setdefault(slot.day, []).append(slot)

    for day, day_slots in by_day.items():
        ordered = sorted(day_slots, key=lambda slot: slot.start_time)
        # back-to-back slots are fine, only a start before the previous end clashes
        for current, following in zip(ordered, ordered[1:]):
            if following.start_time < current.end_time:
                raise ValueError(f"Overlapping start and end times detected for slots with day '{day}'")


class OperatingSlot(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    day: str
    start_time: str
    end_time: str
    quantity: Optional[int] = Field(default=None, ge=1)

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        day = value.lower()
        if day not in WEEKDAYS:
            raise ValueError(f"Must be one of: {', '.join(WEEKDAYS)}")
        return day

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        # zero-padded so that string order matches clock order
        return _parse_clock(value).strftime("%H:%M")

    @model_validator(mode="after")
    def validate_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("Start time must be earlier than end time")
        return self


class ResourceCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    timezone: str = "UTC"
    capacity: Optional[int] = Field(default=None, ge=1)
    slots: list[OperatingSlot] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _validate_timezone(value)

    @model_validator(mode="after")
    def validate_slots(self):
        _check_slots(self.slots)
        return self


class ResourceUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    timezone: Optional[str] = None
    # an explicit null clears the limit; omit the field to leave it unchanged
    capacity: Optional[int] = Field(default=None, ge=1)
    # replaces every slot when given
    slots: Optional[list[OperatingSlot]] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _validate_timezone(value)

    @model_validator(mode="after")
    def validate_slots(self):
        if self.slots is not None:
            _check_slots(self.slots)
        return self


class ResourceItem(BaseModel):
    resource_id: str
    organization_id: str
    name: str
    description: str
    timezone: str
    capacity: Optional[int] = None
    slots: list[OperatingSlot] = Field(default_factory=list)


class BookingCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    resource_id: str = Field(min_length=1)
    status: str = ""
    start_time: datetime
    end_time: datetime
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        return self


class BookingUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    metadata: Optional[dict[str, str]] = None

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        return self


class BookingFilter(BaseModel):
    id: Optional[str] = None
    resource_id: Optional[str] = None
    status: Optional[str] = None
    start_time_after: Optional[datetime] = None
    end_time_before: Optional[datetime] = None
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)


class BookingItem(BaseModel):
    booking_id: str
    resource_id: str
    status: str
    start_time: datetime
    end_time: datetime
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UnavailabilityCreateRequest(BaseModel):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        return self


class UnavailabilityUpdateRequest(UnavailabilityCreateRequest):
    pass


class UnavailabilityFilter(BaseModel):
    id: Optional[str] = None
    start_time_after: Optional[datetime] = None
    end_time_before: Optional[datetime] = None
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)


class UnavailabilityItem(BaseModel):
    unavailability_id: str
    resource_id: str
    start_time: datetime
    end_time: datetime


class AvailabilityRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    slot_length_minutes: int = Field(default=60, ge=1, le=24 * 60)

    @model_validator(mode="after")
    def validate_window(self):
        _check_window(self.start_time, self.end_time)
        if (self.start_time.tzinfo is None) == (self.end_time.tzinfo is None):
            slots = count_slots(self.start_time, self.end_time, self.slot_length_minutes)
            if slots > MAX_AVAILABILITY_SLOTS:
                raise ValueError(
                    f"Window spans {slots} slots; at most {MAX_AVAILABILITY_SLOTS} are allowed per request."
                )
        return self


class SlotAvailability(BaseModel):
    slot_start: datetime
    slot_end: datetime
    booked: int
    unavailable: bool
    remaining_capacity: Optional[int] = None
    available: bool


class ErrorParam(BaseModel):
    name: str
    reason: str


class Result(BaseModel):
    success: bool
    code: Optional[str] = None
    title: Optional[str] = None
    reason: Optional[str] = None
    params: list[ErrorParam] = Field(default_factory=list)

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class OrganizationResult(Result):
    organization: Optional[OrganizationItem] = None


class ResourceResult(Result):
    resource: Optional[ResourceItem] = None


class ResourceListResult(Result):
    resources: list[ResourceItem] = Field(default_factory=list)
    total_items: int = 0


class BookingResult(Result):
    booking: Optional[BookingItem] = None


class BookingListResult(Result):
    bookings: list[BookingItem] = Field(default_factory=list)
    total_items: int = 0


class UnavailabilityResult(Result):
    unavailability: Optional[UnavailabilityItem] = None


class UnavailabilityListResult(Result):
    unavailabilities: list[UnavailabilityItem] = Field(default_factory=list)
    total_items: int = 0


class AvailabilityResult(Result):
    resource_id: Optional[str] = None
    capacity: Optional[int] = None
    slot_length_minutes: Optional[int] = None
    slots: list[SlotAvailability] = Field(default_factory=list)
