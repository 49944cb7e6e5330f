from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from common.utils.responses import error_response
from deliveries.serializers import DeliverySerializer
from drivers import services
from drivers.models import DriverProfile
from drivers.serializers import (
    DriverProfileSerializer,
    DriverStatusSerializer,
    GpsFixSerializer,
)
from services.delivery_management.delivery_lifecycle import (
    get_driver_active_deliveries,
    get_driver_history,
)
from services.delivery_management.exceptions import CoordinationError


# Utility: Ensure request.user is a driver
def require_driver(user):
    if user.role != "driver":
        return False, Response({"error": "Only drivers allowed"}, status=403)
    try:
        profile = user.driver_profile
        return True, profile
    except DriverProfile.DoesNotExist:
        return False, Response({"error": "Driver profile not found"}, status=404)


def _availability(profile):
    return {
        "is_online": profile.is_online,
        "is_available": profile.is_available,
        "is_verified": profile.is_verified,
        "is_eligible": services.is_eligible(profile),
        "latitude": float(profile.current_latitude) if profile.current_latitude is not None else None,
        "longitude": float(profile.current_longitude) if profile.current_longitude is not None else None,
        "last_location_update": profile.last_location_update,
    }


class DriverProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile  # Response object

        serializer = DriverProfileSerializer(profile, context={"request": request})
        return Response(serializer.data)

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverProfileSerializer(
            profile, data=request.data, partial=True, context={"request": request}
        )
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data, status=200)


class DriverStatusView(APIView):
    """
    GET: current availability of the driver
    PUT: go online or offline

    PUT Body:
    {
        "is_online": true,
        "location": {"latitude": 14.5995, "longitude": 121.0244, "speed_kmh": 0}
    }
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response(_availability(profile))

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            if serializer.validated_data["is_online"]:
                services.set_online(profile, serializer.fix())
                message = "You are online"
            else:
                services.set_offline(profile, serializer.fix())
                message = "You are offline"
        except CoordinationError as exc:
            return error_response(exc)

        return Response({"message": message, **_availability(profile)})


class DriverLocationUpdateView(APIView):
    """HTTP fallback for GPS uploads when the driver socket is down."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response(_availability(profile))

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = GpsFixSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            stored = services.update_driver_location(profile, serializer.to_fix())
        except CoordinationError as exc:
            return error_response(exc)

        if not stored:
            return Response({"error": "Go online before sending your location"}, status=409)

        return Response({"message": "Location updated", **_availability(profile)})


class DriverCurrentDeliveriesView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        deliveries = get_driver_active_deliveries(request.user)
        serializer = DeliverySerializer(deliveries, many=True, context={"request": request})
        return Response({"count": len(serializer.data), "deliveries": serializer.data})


class DriverDeliveryHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        history = get_driver_history(request.user)
        serializer = DeliverySerializer(history, many=True, context={"request": request})
        return Response({"count": len(serializer.data), "deliveries": serializer.data})
