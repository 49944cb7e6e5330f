"""Tells what to show in the Django admin interface for deliveries app"""

from django.contrib import admin
from .models import Delivery, DeliveryOffer, DriverLocationHistory, VehicleType


@admin.register(VehicleType)
class VehicleTypeAdmin(admin.ModelAdmin):
    list_display = ("name", "max_weight_kg", "base_price", "price_per_km", "is_active")
    list_filter = ("is_active",)


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    """Delivery admin"""
    list_display = ['id', 'customer', 'driver', 'status', 'total_price', 'created_at', 'offered_at', 'delivered_at']
    list_filter = ['status', 'vehicle_type', 'created_at']
    search_fields = ['customer__username', 'driver__username', 'pickup_address', 'delivery_address']
    readonly_fields = [
        'created_at', 'updated_at', 'offered_at', 'assigned_at', 'arrived_at_pickup_at',
        'picked_up_at', 'in_transit_at', 'delivered_at', 'cancelled_at',
    ]
    date_hierarchy = 'created_at'


@admin.register(DeliveryOffer)
class DeliveryOfferAdmin(admin.ModelAdmin):
    list_display = ("delivery", "driver", "status", "distance_meters", "sent_at", "responded_at")
    list_filter = ("status",)
    search_fields = ("delivery__id", "driver__username")


@admin.register(DriverLocationHistory)
class DriverLocationHistoryAdmin(admin.ModelAdmin):
    list_display = ("driver", "delivery", "event_type", "latitude", "longitude", "timestamp")
    list_filter = ("event_type",)
    search_fields = ("driver__username", "delivery__id")
