from __future__ import annotations

import hmac
import logging
from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from booking import engine as booking_engine
from booking.errors import BOOKING_CONFLICT, INTERNAL, INVALID, NOT_FOUND, UNAVAILABILITY_CONFLICT, InvalidRequest
from booking.schema import (
    BookingCreateRequest,
    BookingUpdateRequest,
    ErrorParam,
    OrganizationCreateRequest,
    ResourceCreateRequest,
    ResourceUpdateRequest,
    Result,
    UnavailabilityCreateRequest,
    UnavailabilityUpdateRequest,
)
from config import get_settings
from db.session import get_session_factory, init_db, validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
API_KEY_HEADER = "X-API-Key"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"
ORGANIZATION_HEADER = "X-Organization-ID"

STATUS_BY_CODE = {
    INVALID: 400,
    NOT_FOUND: 404,
    BOOKING_CONFLICT: 409,
    UNAVAILABILITY_CONFLICT: 409,
    INTERNAL: 500,
}


def verify_api_key(x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER)):
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.booking_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None, alias=ADMIN_API_KEY_HEADER)):
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key.")


def organization_id(x_organization_id: Optional[str] = Header(default=None, alias=ORGANIZATION_HEADER)) -> str:
    value = (x_organization_id or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing {ORGANIZATION_HEADER} header.")
    return value


def respond(result: dict[str, Any], *, created: bool = False) -> JSONResponse:
    if result.get("success"):
        return JSONResponse(status_code=201 if created else 200, content=result)
    return JSONResponse(status_code=STATUS_BY_CODE.get(result.get("code"), 500), content=result)


def _query(**params: Any) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


app = FastAPI(title=APP_NAME, version=APP_VERSION)


@app.on_event("startup")
def startup_checks():
    _ = settings.booking_api_key
    _ = settings.admin_api_key
    _ = settings.database_url
    if settings.auto_create_schema:
        init_db()
    validate_db_compatibility()


@app.exception_handler(RequestValidationError)
def handle_validation_error(_, exc: RequestValidationError):
    error = InvalidRequest.from_errors(exc.errors())
    result = Result(
        success=False,
        code=error.code,
        title=error.title,
        reason=error.detail,
        params=[ErrorParam(**param) for param in error.params],
    )
    return JSONResponse(status_code=STATUS_BY_CODE[INVALID], content=result.model_dump(mode="json"))


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database is not ready.") from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.post("/v1/admin/organizations", dependencies=[Depends(verify_admin_api_key)])
def admin_create_organization(request: OrganizationCreateRequest, db_factory: sessionmaker = Depends(get_session_factory)):
    return respond(booking_engine.create_organization(db_factory, request), created=True)


# Resources


@app.post("/v1/resources", dependencies=[Depends(verify_api_key)])
def create_resource(
    request: ResourceCreateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.create_resource(db_factory, org_id, request), created=True)


@app.get("/v1/resources", dependencies=[Depends(verify_api_key)])
def list_resources(
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(
        booking_engine.find_resources(
            db_factory,
            org_id,
            offset=offset,
            limit=limit,
            default_limit=settings.default_page_size,
            max_limit=settings.max_page_size,
        )
    )


@app.get("/v1/resources/{resource_id}", dependencies=[Depends(verify_api_key)])
def get_resource(
    resource_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.find_resource_by_id(db_factory, org_id, resource_id))


@app.patch("/v1/resources/{resource_id}", dependencies=[Depends(verify_api_key)])
def update_resource(
    resource_id: str,
    request: ResourceUpdateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.update_resource(db_factory, org_id, resource_id, request))


@app.delete("/v1/resources/{resource_id}", dependencies=[Depends(verify_api_key)])
def delete_resource(
    resource_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.delete_resource(db_factory, org_id, resource_id))


@app.get("/v1/resources/{resource_id}/availability", dependencies=[Depends(verify_api_key)])
def get_resource_availability(
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    slot_length_minutes: int = 60,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    payload = {
        "start_time": start_time,
        "end_time": end_time,
        "slot_length_minutes": slot_length_minutes,
    }
    return respond(booking_engine.find_availability(db_factory, org_id, resource_id, payload))


# Bookings


@app.post("/v1/bookings", dependencies=[Depends(verify_api_key)])
def create_booking(
    request: BookingCreateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    result = booking_engine.create_booking(
        db_factory,
        org_id,
        request,
        timeout_seconds=settings.admission_timeout_seconds,
    )
    return respond(result, created=True)


@app.get("/v1/bookings", dependencies=[Depends(verify_api_key)])
def list_bookings(
    id: Optional[str] = None,
    resource_id: Optional[str] = None,
    status: Optional[str] = None,
    start_time_after: Optional[datetime] = None,
    end_time_before: Optional[datetime] = None,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    booking_filter = _query(
        id=id,
        resource_id=resource_id,
        status=status,
        start_time_after=start_time_after,
        end_time_before=end_time_before,
        offset=offset,
        limit=limit,
    )
    return respond(
        booking_engine.find_bookings(
            db_factory,
            org_id,
            booking_filter,
            default_limit=settings.default_page_size,
            max_limit=settings.max_page_size,
        )
    )


@app.get("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def get_booking(
    booking_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.find_booking_by_id(db_factory, org_id, booking_id))


@app.patch("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def update_booking(
    booking_id: str,
    request: BookingUpdateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    result = booking_engine.update_booking(
        db_factory,
        org_id,
        booking_id,
        request,
        timeout_seconds=settings.admission_timeout_seconds,
    )
    return respond(result)


@app.delete("/v1/bookings/{booking_id}", dependencies=[Depends(verify_api_key)])
def delete_booking(
    booking_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.delete_booking(db_factory, org_id, booking_id))


# Unavailabilities


@app.post("/v1/resources/{resource_id}/unavailabilities", dependencies=[Depends(verify_api_key)])
def create_unavailability(
    resource_id: str,
    request: UnavailabilityCreateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    result = booking_engine.create_unavailability(
        db_factory,
        org_id,
        resource_id,
        request,
        timeout_seconds=settings.admission_timeout_seconds,
    )
    return respond(result, created=True)


@app.get("/v1/resources/{resource_id}/unavailabilities", dependencies=[Depends(verify_api_key)])
def list_unavailabilities(
    resource_id: str,
    id: Optional[str] = None,
    start_time_after: Optional[datetime] = None,
    end_time_before: Optional[datetime] = None,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    unavailability_filter = _query(
        id=id,
        start_time_after=start_time_after,
        end_time_before=end_time_before,
        offset=offset,
        limit=limit,
    )
    return respond(
        booking_engine.find_unavailabilities(
            db_factory,
            org_id,
            resource_id,
            unavailability_filter,
            default_limit=settings.default_page_size,
            max_limit=settings.max_page_size,
        )
    )


@app.get("/v1/resources/{resource_id}/unavailabilities/{unavailability_id}", dependencies=[Depends(verify_api_key)])
def get_unavailability(
    resource_id: str,
    unavailability_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.find_unavailability_by_id(db_factory, org_id, resource_id, unavailability_id))


@app.put("/v1/resources/{resource_id}/unavailabilities/{unavailability_id}", dependencies=[Depends(verify_api_key)])
def update_unavailability(
    resource_id: str,
    unavailability_id: str,
    request: UnavailabilityUpdateRequest,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    result = booking_engine.update_unavailability(
        db_factory,
        org_id,
        resource_id,
        unavailability_id,
        request,
        timeout_seconds=settings.admission_timeout_seconds,
    )
    return respond(result)


@app.delete("/v1/resources/{resource_id}/unavailabilities/{unavailability_id}", dependencies=[Depends(verify_api_key)])
def delete_unavailability(
    resource_id: str,
    unavailability_id: str,
    org_id: str = Depends(organization_id),
    db_factory: sessionmaker = Depends(get_session_factory),
):
    return respond(booking_engine.delete_unavailability(db_factory, org_id, resource_id, unavailability_id))
