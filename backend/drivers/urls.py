from django.urls import path
from .views import (
    DriverProfileView,
    DriverStatusView,
    DriverLocationUpdateView,
    DriverCurrentDeliveriesView,
    DriverDeliveryHistoryView,
)

urlpatterns = [
    path("profile/", DriverProfileView.as_view(), name="driver-profile"),
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("current-deliveries/", DriverCurrentDeliveriesView.as_view(), name="driver-current-deliveries"),
    path("history/", DriverDeliveryHistoryView.as_view(), name="driver-history"),
]
