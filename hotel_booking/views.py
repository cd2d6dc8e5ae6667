from django.http import JsonResponse
from .models import Room
from .serializers import (
    RoomSerializer,
    BookingCreateSerializer,
    BookingResultSerializer,
    BookingDetailSerializer,
    PaymentInput,
)
from . import services
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

def welcome(request):
    return JsonResponse({"message": "Welcome to the Hotel Booking System"})

def health_check(request):
    return JsonResponse({"status": "ok"})

class RoomViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    lookup_field = 'number'

    def list(self, request):
        """Search available rooms by minimum capacity and optional category"""
        try:
            min_capacity = int(request.query_params.get('min_capacity', 1))
        except ValueError:
            raise ValidationError({'min_capacity': 'min_capacity must be an integer'})

        rooms = services.list_available_rooms(
            min_capacity=max(min_capacity, 1),
            category=request.query_params.get('category'),
        )
        serializer = self.get_serializer(rooms, many=True)
        return Response(serializer.data)

class BookingViewSet(viewsets.GenericViewSet):
    serializer_class = BookingCreateSerializer
    lookup_value_regex = r'\d+'

    def create(self, request):
        """Resolve the customer, reserve the room and return the owed total"""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.create_booking(
            serializer.identity(),
            serializer.profile(),
            room_number=data['room_number'],
            check_in=data['check_in'],
            check_out=data['check_out'],
        )
        return Response(BookingResultSerializer(result).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        detail = services.get_booking_detail(int(pk))
        return Response(BookingDetailSerializer(detail).data)

    @action(detail=True, methods=['post'])
    def checkout(self, request, pk=None):
        """Release the room held by this booking"""
        booking = services.checkout(int(pk))
        return Response({
            'booking_id': booking.pk,
            'checked_out_at': booking.checked_out_at,
            'message': 'Checkout completed successfully',
        })

class PaymentViewSet(viewsets.GenericViewSet):
    serializer_class = PaymentInput

    def create(self, request):
        serializer = PaymentInput(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        payment = services.record_payment(
            data['booking_id'],
            data['amount'],
            mode=data['payment_mode'],
        )
        return Response({'payment_id': payment.pk}, status=status.HTTP_201_CREATED)
