from rest_framework import serializers

from accounts.serializers import UserSerializer
from drivers.serializers import DriverBasicSerializer, GpsFixSerializer
from services.delivery_management.transitions import next_driver_status
from .models import Delivery, VehicleType


class VehicleTypeSerializer(serializers.ModelSerializer):
    class Meta:
        model = VehicleType
        fields = ['id', 'name', 'description', 'max_weight_kg', 'base_price', 'price_per_km']


class CustomerBasicSerializer(UserSerializer):
    class Meta(UserSerializer.Meta):
        fields = ['id', 'username', 'phone_number']


class DeliverySerializer(serializers.ModelSerializer):
    """Serializer for deliveries, as shown to customers and drivers"""
    customer = CustomerBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True, source='driver.driver_profile', default=None)
    vehicle_type = VehicleTypeSerializer(read_only=True)
    next_status = serializers.SerializerMethodField()

    class Meta:
        model = Delivery
        fields = [
            'id', 'customer', 'driver', 'vehicle_type', 'status',
            'pickup_address', 'pickup_latitude', 'pickup_longitude',
            'pickup_contact_name', 'pickup_contact_phone', 'pickup_instructions',
            'delivery_address', 'delivery_latitude', 'delivery_longitude',
            'delivery_contact_name', 'delivery_contact_phone', 'delivery_instructions',
            'package_description', 'package_weight', 'package_value',
            'distance_km', 'estimated_duration', 'total_price',
            'created_at', 'offered_at', 'assigned_at', 'arrived_at_pickup_at',
            'picked_up_at', 'in_transit_at', 'delivered_at', 'cancelled_at',
            'cancellation_reason', 'failure_reason',
            'recipient_name', 'proof_photo_url', 'delivery_notes',
            'next_status',
        ]
        read_only_fields = fields

    def get_next_status(self, obj):
        """Stage the assigned driver can move the delivery to next."""
        return next_driver_status(obj.status)


class DeliveryCreateSerializer(serializers.ModelSerializer):
    """Serializer for booking a delivery"""
    vehicle_type = serializers.PrimaryKeyRelatedField(
        queryset=VehicleType.objects.filter(is_active=True),
        required=False,
        allow_null=True,
    )

    class Meta:
        model = Delivery
        fields = [
            'vehicle_type',
            'pickup_address', 'pickup_latitude', 'pickup_longitude',
            'pickup_contact_name', 'pickup_contact_phone', 'pickup_instructions',
            'delivery_address', 'delivery_latitude', 'delivery_longitude',
            'delivery_contact_name', 'delivery_contact_phone', 'delivery_instructions',
            'package_description', 'package_weight', 'package_value',
        ]

    def validate(self, data):
        for prefix in ('pickup', 'delivery'):
            lat = data[f'{prefix}_latitude']
            lon = data[f'{prefix}_longitude']
            if not (-90 <= lat <= 90 and -180 <= lon <= 180):
                raise serializers.ValidationError({f'{prefix}_latitude': 'Coordinates out of range'})

        vehicle_type = data.get('vehicle_type')
        weight = data.get('package_weight')
        if vehicle_type and weight is not None and weight > vehicle_type.max_weight_kg:
            raise serializers.ValidationError({
                'package_weight': f'{vehicle_type.name} carries at most {vehicle_type.max_weight_kg} kg'
            })
        return data


class DeliveryCancelSerializer(serializers.Serializer):
    """Serializer for delivery cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True)


class DeliveryStatusSerializer(serializers.Serializer):
    """Driver moves the delivery to its next stage"""
    status = serializers.ChoiceField(choices=[
        Delivery.PICKUP_ARRIVED,
        Delivery.PACKAGE_COLLECTED,
        Delivery.IN_TRANSIT,
        Delivery.DELIVERED,
    ])
    location = GpsFixSerializer(required=False)


class ProofOfDeliverySerializer(serializers.Serializer):
    recipient_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    proof_photo_url = serializers.URLField(required=False, allow_blank=True, max_length=500)
    delivery_notes = serializers.CharField(required=False, allow_blank=True)
    signature_data = serializers.CharField(required=False, allow_blank=True)
    location = GpsFixSerializer(required=False)
