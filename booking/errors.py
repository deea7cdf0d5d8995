"""Application error kinds.

Every failure surfaced by the booking core is one of the classes below. Any
other exception (a driver error, a bug) is reported as ``internal`` and the
caller only ever sees "Internal error."; the detail belongs in the logs.
"""

from __future__ import annotations

from typing import Optional

INVALID = "invalid"
NOT_FOUND = "not_found"
BOOKING_CONFLICT = "booking_conflict"
UNAVAILABILITY_CONFLICT = "unavailability_conflict"
INTERNAL = "internal"


class BookingError(Exception):
    code = INTERNAL
    title = "Internal error"

    def __init__(self, detail: str, *, title: Optional[str] = None, params: Optional[list[dict]] = None):
        super().__init__(detail)
        self.detail = detail
        if title is not None:
            self.title = title
        self.params = params or []

    def __str__(self) -> str:
        return f"booking error: code={self.code} title={self.title} detail={self.detail}"


class InvalidRequest(BookingError):
    code = INVALID
    title = "Invalid request"

    @classmethod
    def from_errors(cls, errors: list[dict]) -> "InvalidRequest":
        """Build from pydantic-style errors, one param per failing location."""
        params = [
            {"name": ".".join(str(part) for part in error["loc"]) or "body", "reason": error["msg"]}
            for error in errors
        ]
        return cls("One or more validation errors occurred while processing your request.", params=params)


class RecordNotFound(BookingError):
    code = NOT_FOUND
    title = "Not found"

    @classmethod
    def wrap(cls, kind: str) -> "RecordNotFound":
        return cls(f"Could not find {kind} or you do not have permission to access it.")


class ResourceNotFound(RecordNotFound):
    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            detail or "Could not find resource or you do not have permission to access it.",
            title="Resource not found",
        )


class BookingConflict(BookingError):
    code = BOOKING_CONFLICT
    title = "Resource unavailable"


class UnavailabilityConflict(BookingError):
    code = UNAVAILABILITY_CONFLICT
    title = "Conflicting unavailability found"


class InternalError(BookingError):
    code = INTERNAL
    title = "Internal error"

    def __init__(self, detail: str = "Internal error."):
        super().__init__(detail)


class TransactionCancelled(InternalError):
    pass


def error_code(exc: Optional[BaseException]) -> str:
    if exc is None:
        return ""
    if isinstance(exc, BookingError):
        return exc.code
    return INTERNAL


def error_message(exc: Optional[BaseException]) -> str:
    if exc is None:
        return ""
    if isinstance(exc, InternalError):
        return "Internal error."
    if isinstance(exc, BookingError):
        return exc.detail
    return "Internal error."
