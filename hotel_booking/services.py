"""Booking workflow: customer resolution, reservation, payment and checkout.

Each mutating operation runs as one ``transaction.atomic`` unit. Room
acquisition locks the room row and flips its status with a conditional
update, so two requests for the same room cannot both commit.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.db.models import QuerySet, Sum
from django.utils import timezone

from .exceptions import (
    BookingNotFoundError,
    ConflictError,
    IdentityRequiredError,
    InvalidPaymentError,
    InvalidRangeError,
    PhoneRequiredError,
    RoomNotFoundError,
    RoomUnavailableError,
    StoreError,
)
from .models import Booking, Customer, CustomerPhone, Payment, Room

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CustomerIdentity:
    email: Optional[str] = None
    national_id: Optional[str] = None


@dataclass(frozen=True)
class CustomerProfile:
    name: str
    mobile: str
    date_of_birth: Optional[date] = None
    street: str = ""
    city: str = ""
    state: str = ""
    country: str = ""


@dataclass(frozen=True)
class BookingResult:
    booking_id: int
    customer_id: int
    total_amount: Decimal


@dataclass(frozen=True)
class BookingDetail:
    booking: Booking
    customer: Customer
    room: Room
    phone: Optional[str]
    total_amount: Decimal
    amount_paid: Decimal

    @property
    def nights(self) -> int:
        return self.booking.nights

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid


def atomic_operation(func):
    """Run ``func`` in its own transaction and map storage failures to StoreError.

    Lock contention (``OperationalError``) is retried with a linear backoff
    when no outer transaction is open; inside one, the first failure is final.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        attempts = max(1, int(getattr(settings, "BOOKING_LOCK_RETRIES", 3)))
        delay = float(getattr(settings, "BOOKING_LOCK_RETRY_DELAY", 0.05))
        if transaction.get_connection().in_atomic_block:
            attempts = 1

        for attempt in range(1, attempts + 1):
            try:
                with transaction.atomic():
                    return func(*args, **kwargs)
            except OperationalError as exc:
                if attempt == attempts:
                    logger.error("%s failed after %d attempt(s): %s", func.__name__, attempt, exc)
                    raise StoreError() from exc
                logger.warning(
                    "%s hit a lock conflict (attempt %d/%d): %s", func.__name__, attempt, attempts, exc
                )
                time.sleep(delay * attempt)
            except DatabaseError as exc:
                logger.exception("%s rolled back on storage error", func.__name__)
                raise StoreError() from exc

    return wrapper


def compute_total_amount(price, check_in: date, check_out: date) -> Decimal:
    """Nightly price times the number of nights; check_out is exclusive."""
    nights = (check_out - check_in).days
    return (Decimal(price) * nights).quantize(CENTS)


# Customer directory

def _normalize_identity(identity: CustomerIdentity) -> tuple[Optional[str], Optional[str]]:
    email = (identity.email or "").strip().lower() or None
    national_id = (identity.national_id or "").strip() or None
    return email, national_id


def _find_customer(email: Optional[str], national_id: Optional[str]) -> Optional[Customer]:
    by_email = Customer.objects.filter(email=email).first() if email else None
    by_national_id = Customer.objects.filter(national_id=national_id).first() if national_id else None

    if by_email and by_national_id and by_email.pk != by_national_id.pk:
        logger.warning(
            "Email %s and national id %s belong to customers %s and %s",
            email, national_id, by_email.pk, by_national_id.pk,
        )
        raise ConflictError(
            "Email and national id match two different customers."
        )
    return by_national_id or by_email


def _resolve_or_create_customer(identity: CustomerIdentity, profile: CustomerProfile) -> tuple[Customer, bool]:
    email, national_id = _normalize_identity(identity)
    if not email and not national_id:
        raise IdentityRequiredError()

    customer = _find_customer(email, national_id)
    if customer is not None:
        return customer, False

    mobile = (profile.mobile or "").strip()
    if not mobile:
        raise PhoneRequiredError()

    try:
        with transaction.atomic():
            customer = Customer.objects.create(
                name=profile.name,
                email=email,
                national_id=national_id,
                date_of_birth=profile.date_of_birth,
                street=profile.street,
                city=profile.city,
                state=profile.state,
                country=profile.country,
            )
            CustomerPhone.objects.create(customer=customer, mobile_number=mobile)
    except IntegrityError:
        # another request created the same identity first
        logger.info("Customer %s/%s created concurrently, re-resolving", email, national_id)
        customer = _find_customer(email, national_id)
        if customer is None:
            raise ConflictError("Customer identity collided with a concurrent request.")
        return customer, False

    logger.info("Customer %s created", customer.pk)
    return customer, True


@atomic_operation
def resolve_or_create_customer(identity: CustomerIdentity, profile: CustomerProfile) -> tuple[Customer, bool]:
    """Return ``(customer, created)`` for the guest identified by email or national id.

    An existing customer is returned as-is; the profile only seeds new rows.
    """
    return _resolve_or_create_customer(identity, profile)


# Reservation workflow

def _acquire_room(room_number: str) -> Room:
    try:
        room = Room.objects.select_for_update().get(number=room_number)
    except Room.DoesNotExist:
        raise RoomNotFoundError(f"Room {room_number} does not exist.")
    if room.status != Room.Status.AVAILABLE:
        raise RoomUnavailableError(f"Room {room_number} is {room.status}.")
    return room


def _insert_booking(room: Room, customer: Customer, check_in: date, check_out: date) -> Booking:
    try:
        with transaction.atomic():
            return Booking.objects.create(
                room=room,
                customer=customer,
                check_in=check_in,
                check_out=check_out,
            )
    except IntegrityError as exc:
        raise RoomUnavailableError(f"Room {room.number} already has an active booking.") from exc


def _occupy_room(room: Room) -> None:
    updated = Room.objects.filter(pk=room.pk, status=Room.Status.AVAILABLE).update(
        status=Room.Status.OCCUPIED
    )
    if updated != 1:
        raise RoomUnavailableError(f"Room {room.number} was taken by a concurrent booking.")
    room.status = Room.Status.OCCUPIED


@atomic_operation
def create_booking(
    identity: CustomerIdentity,
    profile: CustomerProfile,
    room_number: str,
    check_in: date,
    check_out: date,
) -> BookingResult:
    """Reserve ``room_number`` for the guest; all writes commit together or not at all."""
    if check_in >= check_out:
        raise InvalidRangeError(f"check_out ({check_out}) must be after check_in ({check_in}).")

    customer, _ = _resolve_or_create_customer(identity, profile)
    room = _acquire_room(room_number)
    booking = _insert_booking(room, customer, check_in, check_out)
    _occupy_room(room)
    total_amount = compute_total_amount(room.price, check_in, check_out)

    logger.info(
        "Booking %s created: room %s, customer %s, %s to %s, total %s",
        booking.pk, room.number, customer.pk, check_in, check_out, total_amount,
    )
    return BookingResult(booking_id=booking.pk, customer_id=customer.pk, total_amount=total_amount)


# Payment ledger

@atomic_operation
def record_payment(booking_id: int, amount, mode: str = Payment.Mode.CASH) -> Payment:
    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        raise InvalidPaymentError(f"Payment amount {amount!r} is not a number.")
    if not amount.is_finite() or amount < 0:
        raise InvalidPaymentError(f"Payment amount must be non-negative, got {amount}.")
    if mode not in Payment.Mode.values:
        raise InvalidPaymentError(f"Unknown payment mode {mode!r}.")

    booking = Booking.objects.select_related("room").filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found.")

    payment = Payment.objects.create(booking=booking, amount=amount, mode=mode)

    owed = compute_total_amount(booking.room.price, booking.check_in, booking.check_out)
    paid = booking.payments.aggregate(total=Sum("amount"))["total"] or Decimal("0")
    if paid > owed:
        logger.warning("Booking %s overpaid: %s received against %s owed", booking.pk, paid, owed)

    logger.info("Payment %s of %s (%s) recorded for booking %s", payment.pk, amount, mode, booking.pk)
    return payment


# Checkout

@atomic_operation
def checkout(booking_id: int) -> Booking:
    """Release the booking's room. Calling it again on the same booking is harmless."""
    room_id = Booking.objects.filter(pk=booking_id).values_list("room_id", flat=True).first()
    if room_id is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found.")

    # room first, same lock order as create_booking
    room = Room.objects.select_for_update().get(pk=room_id)
    booking = Booking.objects.select_for_update().get(pk=booking_id)

    if booking.checked_out_at is None:
        booking.checked_out_at = timezone.now()
        booking.save(update_fields=["checked_out_at"])
    else:
        logger.info("Booking %s was already checked out at %s", booking.pk, booking.checked_out_at)

    if Booking.objects.filter(room_id=room.pk, checked_out_at__isnull=True).exists():
        logger.warning("Room %s is held by a newer booking, leaving it occupied", room.number)
    else:
        Room.objects.filter(pk=room.pk).update(status=Room.Status.AVAILABLE)
        logger.info("Room %s released by booking %s", room.number, booking.pk)
    return booking


# Query surface

def list_available_rooms(min_capacity: int = 1, category: Optional[str] = None) -> QuerySet:
    rooms = Room.objects.filter(status=Room.Status.AVAILABLE, capacity__gte=min_capacity)
    if category:
        rooms = rooms.filter(category__iexact=category)
    return rooms.order_by("price", "number")


def get_booking_detail(booking_id: int) -> BookingDetail:
    booking = Booking.objects.select_related("room", "customer").filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found.")

    phone = (
        booking.customer.phones.order_by("pk").values_list("mobile_number", flat=True).first()
    )
    amount_paid = booking.payments.aggregate(total=Sum("amount"))["total"] or Decimal("0")
    return BookingDetail(
        booking=booking,
        customer=booking.customer,
        room=booking.room,
        phone=phone,
        total_amount=compute_total_amount(booking.room.price, booking.check_in, booking.check_out),
        amount_paid=Decimal(amount_paid).quantize(CENTS),
    )
