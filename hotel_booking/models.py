from decimal import Decimal

from django.db import models
from django.db.models import F, Q
from django.core.validators import MinValueValidator

class Room(models.Model):
    class Category(models.TextChoices):
        ECONOMY = "Economy"
        DELUXE = "Deluxe"
        SUITE = "Suite"
        PRESIDENTIAL = "Presidential"

    class Status(models.TextChoices):
        AVAILABLE = "available"
        OCCUPIED = "occupied"

    number = models.CharField(max_length=20, unique=True)
    category = models.CharField(max_length=50, choices=Category.choices, default=Category.ECONOMY)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal("0.01"))])
    capacity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.AVAILABLE)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["price", "number"]
        constraints = [
            models.CheckConstraint(condition=Q(price__gt=0), name="room_price_positive"),
            models.CheckConstraint(condition=Q(capacity__gte=1), name="room_capacity_positive"),
        ]

    def __str__(self):
        return f"Room {self.number} ({self.category})"

    @property
    def is_available(self):
        return self.status == self.Status.AVAILABLE

class Customer(models.Model):
    name = models.CharField(max_length=150)
    email = models.EmailField(unique=True, null=True, blank=True)
    national_id = models.CharField(max_length=20, unique=True, null=True, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)
    street = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    country = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

class CustomerPhone(models.Model):
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="phones")
    mobile_number = models.CharField(max_length=20)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["customer", "mobile_number"], name="unique_customer_phone"),
        ]

class Booking(models.Model):
    room = models.ForeignKey(Room, on_delete=models.PROTECT, related_name="bookings")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="bookings")
    check_in = models.DateField()
    check_out = models.DateField()  # exclusive
    created_at = models.DateTimeField(auto_now_add=True)
    checked_out_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(check_out__gt=F("check_in")), name="booking_checkout_after_checkin"),
            # a room is held by at most one stay that has not been checked out
            models.UniqueConstraint(
                fields=["room"],
                condition=Q(checked_out_at__isnull=True),
                name="one_active_booking_per_room",
            ),
        ]

    @property
    def is_active(self):
        return self.checked_out_at is None

    @property
    def nights(self):
        return (self.check_out - self.check_in).days

class Payment(models.Model):
    class Mode(models.TextChoices):
        CASH = "cash"
        CARD = "card"
        UPI = "upi"
        ONLINE = "online"
        BANK_TRANSFER = "bank_transfer"

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])
    mode = models.CharField(max_length=20, choices=Mode.choices, default=Mode.CASH)
    paid_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(amount__gte=0), name="payment_amount_non_negative"),
        ]
