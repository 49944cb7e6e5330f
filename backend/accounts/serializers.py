from django.contrib.auth import authenticate
from rest_framework import serializers

from deliveries.models import VehicleType
from drivers.models import DriverProfile
from .models import User


class UserSerializer(serializers.ModelSerializer):
    profile_picture_url = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "role",
            "phone_number",
            "completed_deliveries",
            "profile_picture",
            "profile_picture_url",
        ]
        read_only_fields = ["id", "role", "completed_deliveries", "profile_picture_url"]
        extra_kwargs = {
            "profile_picture": {"write_only": True, "required": False}
        }

    def get_profile_picture_url(self, obj):
        """Absolute URL so mobile clients never receive a bare media path."""
        if not obj.profile_picture:
            return None
        request = self.context.get("request")
        url = obj.profile_picture.url
        return request.build_absolute_uri(url) if request else url


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(write_only=True)

    def validate(self, data):
        user = authenticate(username=data["username"], password=data["password"])
        if user is None:
            raise serializers.ValidationError("Invalid username or password")
        return user


class RegisterSerializer(serializers.ModelSerializer):
    """
    Sign-up for customers and drivers.

    Operators are created through the admin. A driver account starts
    unverified and offline; it cannot receive offers until an operator
    verifies it and the driver goes online with a GPS fix.
    """
    password = serializers.CharField(write_only=True, min_length=8)
    role = serializers.ChoiceField(choices=[User.CUSTOMER, User.DRIVER])
    vehicle_number = serializers.CharField(required=False, max_length=20)
    vehicle_type = serializers.PrimaryKeyRelatedField(
        queryset=VehicleType.objects.filter(is_active=True),
        required=False,
        allow_null=True,
    )

    class Meta:
        model = User
        fields = ['username', 'password', 'email', 'role', 'phone_number', 'vehicle_number', 'vehicle_type']

    def validate_email(self, value):
        if value and User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("Email already exists")
        return value

    def validate(self, data):
        if data['role'] == User.DRIVER:
            if not data.get('vehicle_number'):
                raise serializers.ValidationError({'vehicle_number': 'Vehicle number is required for drivers'})
            if DriverProfile.objects.filter(vehicle_number=data['vehicle_number']).exists():
                raise serializers.ValidationError({'vehicle_number': 'Vehicle already registered'})
        return data

    def create(self, validated_data):
        vehicle_number = validated_data.pop('vehicle_number', None)
        vehicle_type = validated_data.pop('vehicle_type', None)
        password = validated_data.pop('password')

        user = User.objects.create_user(password=password, **validated_data)
        if user.role == User.DRIVER:
            DriverProfile.objects.create(user=user, vehicle_number=vehicle_number, vehicle_type=vehicle_type)
        return user
