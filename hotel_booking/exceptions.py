"""Booking workflow errors and their REST rendering.

Every error raised by :mod:`hotel_booking.services` derives from
:class:`BookingError`. They are DRF ``APIException`` subclasses, so a view can
let them propagate and :func:`booking_exception_handler` turns them into a
``{"error": <code>, "detail": <message>}`` response with the matching status.
DRF's own errors (validation, 404, auth) are rendered in the same shape.
"""

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.views import exception_handler


class BookingError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Booking operation failed."
    default_code = "booking_error"


class InvalidRangeError(BookingError):
    default_detail = "check_out must be after check_in."
    default_code = "invalid_range"


class IdentityRequiredError(BookingError):
    default_detail = "Either email or national_id is required to identify a customer."
    default_code = "identity_required"


class PhoneRequiredError(BookingError):
    default_detail = "A mobile number is required to register a new customer."
    default_code = "phone_required"


class InvalidPaymentError(BookingError):
    default_detail = "Payment amount or mode is invalid."
    default_code = "invalid_payment"


class RoomUnavailableError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Room is not available."
    default_code = "room_unavailable"


class ConflictError(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Customer identity is ambiguous."
    default_code = "conflict"


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class BookingNotFoundError(NotFoundError):
    default_detail = "Booking not found."


class RoomNotFoundError(NotFoundError):
    default_detail = "Room not found."


class StoreError(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Storage failure, the operation was rolled back."
    default_code = "store_error"


def booking_exception_handler(exc, context):
    if isinstance(exc, Http404):
        exc = exceptions.NotFound(*exc.args)
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied(*exc.args)

    response = exception_handler(exc, context)
    if response is None:
        return response

    if isinstance(exc, ValidationError):
        response.data = {"error": "invalid_request", "detail": exc.detail}
    else:
        response.data = {"error": exc.default_code, "detail": str(exc.detail)}
    return response
