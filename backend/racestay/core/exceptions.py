"""
Domain error taxonomy for the settlement engine.

Services raise these instead of HTTPException so the same code paths can run
from the scheduler and the webhook handler. The API layer maps them to HTTP
responses through a single exception handler.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from racestay.core.logging import get_logger

logger = get_logger(__name__)


class RaceStayError(Exception):
    """Base class for all domain errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "race_stay_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidDateRange(RaceStayError):
    code = "invalid_date_range"


class InvalidBookingRequest(RaceStayError):
    code = "invalid_booking_request"


class InsufficientPoints(RaceStayError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_points"

    def __init__(self, balance: int, required: int, user_id: int | None = None):
        super().__init__(f"Insufficient points. Current: {balance}, Required: {required}")
        self.balance = balance
        self.required = required
        self.user_id = user_id


class StaleBookingState(RaceStayError):
    status_code = status.HTTP_409_CONFLICT
    code = "stale_booking_state"

    def __init__(self, booking_id: int, expected: tuple[str, ...], actual: str | None = None):
        detail = f"Booking {booking_id} is no longer in state {'/'.join(expected)}"
        if actual:
            detail += f" (current: {actual})"
        super().__init__(detail)
        self.booking_id = booking_id
        self.expected = expected
        self.actual = actual


class AvailabilityConflict(RaceStayError):
    status_code = status.HTTP_409_CONFLICT
    code = "availability_conflict"


class ExternalEventReplay(RaceStayError):
    """A webhook event that was already applied. Callers treat it as success."""

    status_code = status.HTTP_200_OK
    code = "external_event_replay"


class LedgerIntegrityViolation(RaceStayError):
    status_code = status.HTTP_423_LOCKED
    code = "ledger_integrity_violation"


class NotFoundError(RaceStayError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class MissingRace(NotFoundError):
    code = "missing_race"


class MissingProperty(NotFoundError):
    code = "missing_property"


class MissingHost(NotFoundError):
    code = "missing_host"


class BookingNotFound(NotFoundError):
    code = "booking_not_found"


class UserNotFound(NotFoundError):
    code = "user_not_found"


class NotBookingParticipant(RaceStayError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_booking_participant"


class NotPropertyOwner(RaceStayError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_property_owner"


class AccountInactive(RaceStayError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "account_inactive"


class InvalidWebhookEvent(RaceStayError):
    code = "invalid_webhook_event"


async def race_stay_error_handler(request: Request, exc: RaceStayError) -> JSONResponse:
    """Translate domain errors into JSON responses."""
    if exc.status_code >= 500:
        logger.error("request_domain_error", code=exc.code, detail=exc.message)
    else:
        logger.info("request_domain_error", code=exc.code, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )
