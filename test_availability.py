"""Conflict query counts and slot occupancy."""

from __future__ import annotations

from booking.availability import RecordKind, overlap_count, slot_occupancy, split_into_slots
from conftest import at


def _count(db_factory, kind, resource_id, start, end, exclude_ids=()):
    with db_factory() as db:
        return overlap_count(
            db,
            kind,
            resource_id=resource_id,
            start_time=start,
            end_time=end,
            exclude_ids=exclude_ids,
        )


def test_counts_only_overlapping_bookings(db_factory, make_resource, add_booking):
    resource_id = make_resource(capacity=5)
    add_booking(resource_id, at(9), at(10))
    add_booking(resource_id, at(10, 30), at(10, 45))
    add_booking(resource_id, at(13), at(14))

    assert _count(db_factory, RecordKind.BOOKING, resource_id, at(10), at(11)) == 2


def test_boundary_touch_is_counted(db_factory, make_resource, add_booking):
    resource_id = make_resource(capacity=1)
    add_booking(resource_id, at(10), at(11))

    assert _count(db_factory, RecordKind.BOOKING, resource_id, at(11), at(12)) == 1
    assert _count(db_factory, RecordKind.BOOKING, resource_id, at(11, 1), at(12)) == 0


def test_existing_record_inside_candidate_is_counted(db_factory, make_resource, add_booking):
    resource_id = make_resource()
    add_booking(resource_id, at(10, 15), at(10, 45))

    assert _count(db_factory, RecordKind.BOOKING, resource_id, at(10), at(11)) == 1


def test_excluded_ids_are_ignored(db_factory, make_resource, add_booking):
    resource_id = make_resource(capacity=1)
    own = add_booking(resource_id, at(10), at(11))
    add_booking(resource_id, at(10, 30), at(12))

    assert _count(db_factory, RecordKind.BOOKING, resource_id, at(10), at(11), exclude_ids={own}) == 1


def test_other_resources_are_ignored(db_factory, make_resource, add_booking):
    first = make_resource()
    second = make_resource()
    add_booking(second, at(10), at(11))

    assert _count(db_factory, RecordKind.BOOKING, first, at(10), at(11)) == 0


def test_unavailability_kind_queries_unavailabilities(db_factory, make_resource, add_booking, add_unavailability):
    resource_id = make_resource()
    add_booking(resource_id, at(10), at(11))
    add_unavailability(resource_id, at(12), at(13))

    assert _count(db_factory, RecordKind.UNAVAILABILITY, resource_id, at(10), at(11)) == 0
    assert _count(db_factory, RecordKind.UNAVAILABILITY, resource_id, at(12, 30), at(14)) == 1


def test_repeated_queries_return_same_count(db_factory, make_resource, add_booking):
    resource_id = make_resource(capacity=3)
    add_booking(resource_id, at(10), at(11))
    add_booking(resource_id, at(10), at(12))

    counts = {_count(db_factory, RecordKind.BOOKING, resource_id, at(10, 30), at(11, 30)) for _ in range(5)}
    assert counts == {2}


def test_split_into_slots_clips_last_slot():
    slots = split_into_slots(start_time=at(10), end_time=at(11, 30), slot_length_minutes=60)
    assert slots == [(at(10), at(11)), (at(11), at(11, 30))]


class _Row:
    def __init__(self, start, end):
        self.start_time = start
        self.end_time = end


def test_slot_occupancy_reports_capacity_and_blackouts():
    slots = slot_occupancy(
        bookings=[_Row(at(10, 15), at(10, 45)), _Row(at(10, 20), at(10, 40))],
        unavailabilities=[_Row(at(12, 30), at(13))],
        start_time=at(9),
        end_time=at(13),
        slot_length_minutes=60,
        capacity=2,
    )

    by_start = {slot["slot_start"]: slot for slot in slots}
    assert by_start[at(9)]["available"] is True
    assert by_start[at(9)]["remaining_capacity"] == 2
    assert by_start[at(10)]["booked"] == 2
    assert by_start[at(10)]["available"] is False
    assert by_start[at(12)]["unavailable"] is True
    assert by_start[at(12)]["available"] is False


def test_slot_occupancy_unlimited_capacity():
    slots = slot_occupancy(
        bookings=[_Row(at(10), at(10, 30))] * 4,
        unavailabilities=[],
        start_time=at(10),
        end_time=at(10, 30),
        slot_length_minutes=30,
        capacity=None,
    )
    assert slots[0]["booked"] == 4
    assert slots[0]["remaining_capacity"] is None
    assert slots[0]["available"] is True
