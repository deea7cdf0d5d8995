"""Booking and unavailability admission controllers."""

from __future__ import annotations

import pytest

from booking.admission import check_booking_admission, check_unavailability_admission
from booking.errors import BookingConflict, ResourceNotFound, UnavailabilityConflict
from booking.interval import Interval
from conftest import at


def _booking_decision(db_factory, org, resource_id, start, end, exclude=()):
    with db_factory() as db, db.begin():
        return check_booking_admission(
            db,
            organization_id=org,
            resource_id=resource_id,
            interval=Interval(start, end),
            exclude_booking_ids=exclude,
        )


def _unavailability_decision(db_factory, org, resource_id, start, end, exclude=()):
    with db_factory() as db, db.begin():
        return check_unavailability_admission(
            db,
            organization_id=org,
            resource_id=resource_id,
            interval=Interval(start, end),
            exclude_unavailability_ids=exclude,
        )


class TestBookingAdmission:
    def test_rejects_when_capacity_is_full(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=2)
        add_booking(resource_id, at(9), at(12))
        add_booking(resource_id, at(10), at(11))

        decision = _booking_decision(db_factory, org, resource_id, at(10, 15), at(10, 45))

        assert not decision.admitted
        assert isinstance(decision.conflict, BookingConflict)
        assert decision.reason == "Maximum bookings for specified resource reached."

    def test_admits_when_nothing_overlaps(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=2)
        add_booking(resource_id, at(9), at(12))
        add_booking(resource_id, at(10), at(11))

        decision = _booking_decision(db_factory, org, resource_id, at(13), at(14))

        assert decision.admitted
        assert decision.conflict is None

    def test_admits_below_capacity(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=2)
        add_booking(resource_id, at(10), at(11))

        assert _booking_decision(db_factory, org, resource_id, at(10), at(11)).admitted

    def test_unlimited_capacity_admits_any_overlap(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=None)
        for _ in range(25):
            add_booking(resource_id, at(10), at(11))

        assert _booking_decision(db_factory, org, resource_id, at(10), at(11)).admitted

    def test_update_does_not_conflict_with_itself(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=1)
        own = add_booking(resource_id, at(10), at(11))

        assert not _booking_decision(db_factory, org, resource_id, at(10, 30), at(11, 30)).admitted
        assert _booking_decision(db_factory, org, resource_id, at(10, 30), at(11, 30), exclude={own}).admitted

    def test_unavailability_blocks_booking_regardless_of_capacity(
        self, db_factory, org, make_resource, add_unavailability
    ):
        resource_id = make_resource(capacity=10)
        add_unavailability(resource_id, at(10), at(12))

        decision = _booking_decision(db_factory, org, resource_id, at(11), at(13))

        assert not decision.admitted
        assert isinstance(decision.conflict, UnavailabilityConflict)

    def test_unavailability_blocks_unlimited_resource(self, db_factory, org, make_resource, add_unavailability):
        resource_id = make_resource(capacity=None)
        add_unavailability(resource_id, at(10), at(12))

        assert not _booking_decision(db_factory, org, resource_id, at(12), at(13)).admitted

    def test_unknown_resource(self, db_factory, org):
        with pytest.raises(ResourceNotFound):
            _booking_decision(db_factory, org, "missing", at(10), at(11))

    def test_resource_of_another_organization(self, db_factory, org, other_org, make_resource):
        resource_id = make_resource(capacity=1, organization_id=other_org)

        with pytest.raises(ResourceNotFound):
            _booking_decision(db_factory, org, resource_id, at(10), at(11))

    def test_single_seat_scenario(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=1)
        add_booking(resource_id, at(10), at(11))

        assert not _booking_decision(db_factory, org, resource_id, at(10, 30), at(10, 45)).admitted
        assert not _booking_decision(db_factory, org, resource_id, at(11), at(12)).admitted
        assert _booking_decision(db_factory, org, resource_id, at(11, 1), at(12)).admitted


class TestUnavailabilityAdmission:
    def test_any_overlap_is_a_conflict(self, db_factory, org, make_resource, add_unavailability):
        resource_id = make_resource(capacity=10)
        add_unavailability(resource_id, at(10), at(11))

        decision = _unavailability_decision(db_factory, org, resource_id, at(11), at(12))

        assert not decision.admitted
        assert isinstance(decision.conflict, UnavailabilityConflict)

    def test_admits_disjoint_window(self, db_factory, org, make_resource, add_unavailability):
        resource_id = make_resource()
        add_unavailability(resource_id, at(10), at(11))

        assert _unavailability_decision(db_factory, org, resource_id, at(11, 1), at(12)).admitted

    def test_update_excludes_own_window(self, db_factory, org, make_resource, add_unavailability):
        resource_id = make_resource()
        own = add_unavailability(resource_id, at(10), at(11))

        assert _unavailability_decision(db_factory, org, resource_id, at(10), at(12), exclude={own}).admitted

    def test_existing_booking_blocks_window(self, db_factory, org, make_resource, add_booking):
        resource_id = make_resource(capacity=5)
        add_booking(resource_id, at(10), at(11))

        decision = _unavailability_decision(db_factory, org, resource_id, at(9), at(10))

        assert not decision.admitted
        assert isinstance(decision.conflict, BookingConflict)

    def test_unknown_resource(self, db_factory, org):
        with pytest.raises(ResourceNotFound):
            _unavailability_decision(db_factory, org, "missing", at(10), at(11))
