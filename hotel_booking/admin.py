from django.contrib import admin

from .models import Booking, Customer, CustomerPhone, Payment, Room


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ("number", "category", "price", "capacity", "status")
    list_filter = ("category", "status")
    search_fields = ("number",)
    # status follows bookings and checkouts
    readonly_fields = ("status",)


class CustomerPhoneInline(admin.TabularInline):
    model = CustomerPhone
    extra = 0


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "national_id", "city", "created_at")
    search_fields = ("name", "email", "national_id")
    inlines = [CustomerPhoneInline]


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("amount", "mode", "paid_at")
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "room", "customer", "check_in", "check_out", "created_at", "checked_out_at")
    list_filter = ("check_in", "check_out")
    search_fields = ("room__number", "customer__email", "customer__name")
    readonly_fields = ("room", "customer", "check_in", "check_out", "created_at", "checked_out_at")
    inlines = [PaymentInline]

    def has_delete_permission(self, request, obj=None):
        return False
