from rest_framework.routers import DefaultRouter
from hotel_booking.views import RoomViewSet, BookingViewSet, PaymentViewSet

router = DefaultRouter()
router.register(r'rooms', RoomViewSet)
router.register(r'bookings', BookingViewSet, basename='booking')
router.register(r'payments', PaymentViewSet, basename='payment')

urlpatterns = router.urls
