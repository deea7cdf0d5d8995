"""HTTP surface: auth, organization scoping and status-code mapping."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api_server import app
from db.session import get_session_factory
from conftest import at

HEADERS = {"X-API-Key": "test-booking-key", "X-Organization-ID": "org-1"}


@pytest.fixture
def client(db_factory, org):
    app.dependency_overrides[get_session_factory] = lambda: db_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_resource(client, capacity=1) -> str:
    response = client.post("/v1/resources", json={"name": "Studio", "capacity": capacity}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["resource"]["resource_id"]


def _book(client, resource_id, start, end):
    return client.post(
        "/v1/bookings",
        json={"resource_id": resource_id, "start_time": start.isoformat(), "end_time": end.isoformat()},
        headers=HEADERS,
    )


def test_health_live(client):
    assert client.get("/health/live").json()["status"] == "ok"


def test_requires_api_key(client):
    response = client.get("/v1/resources", headers={"X-Organization-ID": "org-1"})
    assert response.status_code == 401


def test_requires_organization_header(client):
    response = client.get("/v1/resources", headers={"X-API-Key": "test-booking-key"})
    assert response.status_code == 400


def test_admin_creates_organization(client):
    response = client.post(
        "/v1/admin/organizations",
        json={"name": "Initech"},
        headers={"X-Admin-API-Key": "test-admin-key"},
    )
    assert response.status_code == 201
    assert response.json()["organization"]["name"] == "Initech"


def test_booking_conflict_maps_to_409(client):
    resource_id = _create_resource(client, capacity=1)

    assert _book(client, resource_id, at(10), at(11)).status_code == 201
    conflict = _book(client, resource_id, at(11), at(12))

    assert conflict.status_code == 409
    assert conflict.json()["code"] == "booking_conflict"


def test_unavailability_conflict_maps_to_409(client):
    resource_id = _create_resource(client, capacity=10)
    window = {"start_time": at(10).isoformat(), "end_time": at(11).isoformat()}

    created = client.post(f"/v1/resources/{resource_id}/unavailabilities", json=window, headers=HEADERS)
    blocked = _book(client, resource_id, at(10, 30), at(10, 45))

    assert created.status_code == 201
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "unavailability_conflict"


def test_unknown_resource_maps_to_404(client):
    assert _book(client, "missing", at(10), at(11)).status_code == 404


def test_invalid_payload_maps_to_400(client):
    resource_id = _create_resource(client)
    response = _book(client, resource_id, at(11), at(10))

    assert response.status_code == 400
    assert response.json()["code"] == "invalid"


def test_update_and_list_bookings(client):
    resource_id = _create_resource(client, capacity=1)
    booking_id = _book(client, resource_id, at(10), at(11)).json()["booking"]["booking_id"]

    moved = client.patch(
        f"/v1/bookings/{booking_id}",
        json={"start_time": at(10, 30).isoformat(), "end_time": at(11, 30).isoformat()},
        headers=HEADERS,
    )
    listed = client.get("/v1/bookings", params={"resource_id": resource_id}, headers=HEADERS)

    assert moved.status_code == 200
    assert listed.json()["total_items"] == 1


def test_other_organization_cannot_see_booking(client, other_org):
    resource_id = _create_resource(client)
    booking_id = _book(client, resource_id, at(10), at(11)).json()["booking"]["booking_id"]

    response = client.get(f"/v1/bookings/{booking_id}", headers={**HEADERS, "X-Organization-ID": other_org})

    assert response.status_code == 404


def test_availability_endpoint(client):
    resource_id = _create_resource(client, capacity=1)
    _book(client, resource_id, at(10, 15), at(10, 45))

    response = client.get(
        f"/v1/resources/{resource_id}/availability",
        params={"start_time": at(9).isoformat(), "end_time": at(11).isoformat(), "slot_length_minutes": 60},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert [slot["available"] for slot in response.json()["slots"]] == [True, False]


def test_delete_booking(client):
    resource_id = _create_resource(client)
    booking_id = _book(client, resource_id, at(10), at(11)).json()["booking"]["booking_id"]

    assert client.delete(f"/v1/bookings/{booking_id}", headers=HEADERS).status_code == 200
    assert client.delete(f"/v1/bookings/{booking_id}", headers=HEADERS).status_code == 404


def test_request_bodies_are_published_in_openapi(client):
    schemas = client.get("/openapi.json").json()["components"]["schemas"]

    assert {"BookingCreateRequest", "ResourceCreateRequest", "UnavailabilityCreateRequest"} <= set(schemas)


def test_body_validation_error_lists_params(client):
    response = client.post(
        "/v1/resources",
        json={"name": "Court", "slots": [{"day": "monday", "start_time": "7am", "end_time": "09:00"}]},
        headers=HEADERS,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "invalid"
    assert "body.slots.0.start_time" in [param["name"] for param in body["params"]]


def test_patch_resource_clears_capacity_with_explicit_null(client):
    resource_id = _create_resource(client, capacity=2)

    renamed = client.patch(f"/v1/resources/{resource_id}", json={"name": "Loft"}, headers=HEADERS)
    cleared = client.patch(f"/v1/resources/{resource_id}", json={"capacity": None}, headers=HEADERS)

    assert renamed.json()["resource"]["capacity"] == 2
    assert cleared.json()["resource"]["capacity"] is None


def test_availability_window_too_large(client):
    resource_id = _create_resource(client)

    response = client.get(
        f"/v1/resources/{resource_id}/availability",
        params={"start_time": at(0).isoformat(), "end_time": at(0, day=20).isoformat(), "slot_length_minutes": 1},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid"
