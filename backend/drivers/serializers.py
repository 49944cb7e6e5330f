from rest_framework import serializers

from accounts.serializers import UserSerializer
from drivers.models import DriverProfile
from services.tracking import GpsFix


class DriverProfileSerializer(serializers.ModelSerializer):
    """
    Full driver profile serializer
    """
    user = UserSerializer(read_only=True)
    vehicle_type_name = serializers.CharField(source="vehicle_type.name", read_only=True, default=None)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "user",
            "vehicle_number",
            "vehicle_type",
            "vehicle_type_name",
            "is_online",
            "is_available",
            "is_verified",
            "current_latitude",
            "current_longitude",
            "last_location_update",
        ]
        read_only_fields = [
            "id",
            "is_online",
            "is_available",
            "is_verified",
            "current_latitude",
            "current_longitude",
            "last_location_update",
        ]

    def to_representation(self, instance):
        """Ensure user serializer gets request context for URL generation"""
        representation = super().to_representation(instance)
        if 'user' in representation and instance.user:
            request = self.context.get('request')
            representation['user'] = UserSerializer(instance.user, context={'request': request}).data
        return representation


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info shown to customers on a delivery.
    """
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "username",
            "phone_number",
            "vehicle_number",
            "current_latitude",
            "current_longitude",
        ]


class GpsFixSerializer(serializers.Serializer):
    """
    A GPS fix from the driver's device.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    speed_kmh = serializers.FloatField(required=False, min_value=0)
    speed = serializers.FloatField(required=False, min_value=0, help_text="Device speed in m/s")
    heading = serializers.FloatField(required=False, allow_null=True)
    accuracy = serializers.FloatField(required=False, allow_null=True, min_value=0)

    def to_fix(self) -> GpsFix:
        return GpsFix.from_data(self.validated_data)


class DriverStatusSerializer(serializers.Serializer):
    """
    Go online (with the current GPS fix) or offline.
    """
    is_online = serializers.BooleanField()
    location = GpsFixSerializer(required=False)

    def fix(self):
        location = self.validated_data.get("location")
        return GpsFix.from_data(location) if location else None
