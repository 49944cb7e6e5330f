from django.contrib import admin
from drivers.models import DriverProfile


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for verifying drivers and inspecting availability"""

    list_display = [
        "user",
        "vehicle_number",
        "vehicle_type",
        "is_verified",
        "is_online",
        "is_available",
        "last_location_update",
    ]

    list_filter = [
        "is_verified",
        "is_online",
        "is_available",
        "vehicle_type",
    ]

    search_fields = [
        "user__username",
        "vehicle_number",
    ]

    readonly_fields = [
        "current_latitude",
        "current_longitude",
        "last_location_update",
    ]

    actions = ["verify_drivers"]
    ordering = ("user__username",)

    @admin.action(description="Mark selected drivers as verified")
    def verify_drivers(self, request, queryset):
        updated = queryset.update(is_verified=True)
        self.message_user(request, f"{updated} driver(s) verified.")
