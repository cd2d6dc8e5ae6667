from decimal import Decimal

from rest_framework import serializers
from .models import Room, Payment
from .services import CustomerIdentity, CustomerProfile

class CustomerInput(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    email = serializers.EmailField(required=False, allow_null=True)
    national_id = serializers.CharField(max_length=20, required=False, allow_null=True, allow_blank=True)
    mobile = serializers.CharField(max_length=20)
    date_of_birth = serializers.DateField(required=False, allow_null=True)
    street = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    city = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    state = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    country = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")

class RoomSerializer(serializers.ModelSerializer):

    class Meta:
        model = Room
        fields = ['number', 'category', 'price', 'capacity', 'status', 'description']

class BookingCreateSerializer(serializers.Serializer):
    customer = CustomerInput()
    room_number = serializers.CharField(max_length=20)
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    # check_in < check_out is enforced by the booking workflow itself

    def identity(self):
        customer = self.validated_data['customer']
        return CustomerIdentity(
            email=customer.get('email'),
            national_id=customer.get('national_id'),
        )

    def profile(self):
        customer = self.validated_data['customer']
        return CustomerProfile(
            name=customer['name'],
            mobile=customer['mobile'],
            date_of_birth=customer.get('date_of_birth'),
            street=customer['street'],
            city=customer['city'],
            state=customer['state'],
            country=customer['country'],
        )

class BookingResultSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    customer_id = serializers.IntegerField()
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)

class BookingDetailSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField(source='booking.pk')
    booking_date = serializers.DateTimeField(source='booking.created_at')
    check_in = serializers.DateField(source='booking.check_in')
    check_out = serializers.DateField(source='booking.check_out')
    checked_out_at = serializers.DateTimeField(source='booking.checked_out_at', allow_null=True)
    nights = serializers.IntegerField()
    room_number = serializers.CharField(source='room.number')
    room_category = serializers.CharField(source='room.category')
    room_price = serializers.DecimalField(source='room.price', max_digits=10, decimal_places=2)
    customer_id = serializers.IntegerField(source='customer.pk')
    customer_name = serializers.CharField(source='customer.name')
    customer_email = serializers.EmailField(source='customer.email', allow_null=True)
    customer_phone = serializers.CharField(source='phone', allow_null=True)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    amount_paid = serializers.DecimalField(max_digits=12, decimal_places=2)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2)

class PaymentInput(serializers.Serializer):
    booking_id = serializers.IntegerField(min_value=1)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0'))
    payment_mode = serializers.ChoiceField(choices=Payment.Mode.choices, default=Payment.Mode.CASH)
