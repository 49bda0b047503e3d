"""Domain errors raised by the booking, webhook and reaper services.

Routes translate them into ``HTTPException`` with :func:`raise_http_error`;
the services themselves never import FastAPI.
"""

from fastapi import HTTPException, status


class BookingError(Exception):
    """Base class for errors that map onto a client-facing response."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(BookingError):
    """The target was taken or changed by a concurrent writer."""

    status_code = status.HTTP_409_CONFLICT


class Unauthorized(BookingError):
    """The actor does not own the target resource."""

    status_code = status.HTTP_403_FORBIDDEN


class UpstreamFailure(BookingError):
    """The payment gateway was unreachable or too slow."""

    status_code = status.HTTP_502_BAD_GATEWAY


class MalformedEvent(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


class SignatureInvalid(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST


def raise_http_error(exc: BookingError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
