from django.contrib import admin
from django.urls import path, include
from hotel_booking.views import health_check, welcome

urlpatterns = [
    path('admin/', admin.site.urls),
    path('health', health_check, name='health'),
    path('', welcome, name='welcome'),
    path('api/', include('hotel_booking.urls')),
]
