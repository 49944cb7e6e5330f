import logging

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.utils.responses import error_response
from services.delivery_management import delivery_lifecycle as lifecycle
from services.delivery_management.exceptions import CoordinationError
from services.tracking import GpsFix
from .models import Delivery, VehicleType
from .serializers import (
    DeliveryCancelSerializer,
    DeliveryCreateSerializer,
    DeliverySerializer,
    DeliveryStatusSerializer,
    ProofOfDeliverySerializer,
    VehicleTypeSerializer,
)

logger = logging.getLogger(__name__)


def _role_required(request, role, action):
    if request.user.role != role:
        return Response(
            {'error': f'Only {role}s can {action}'},
            status=status.HTTP_403_FORBIDDEN
        )
    return None


def _fix_from(validated_data):
    location = validated_data.get('location')
    return GpsFix.from_data(location) if location else None


def _delivery_response(result, request, http_status=status.HTTP_200_OK):
    serializer = DeliverySerializer(result.delivery, context={'request': request})
    return Response({
        'success': result.success,
        'message': result.message,
        'delivery': serializer.data,
        **(result.extra or {}),
    }, status=http_status)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_vehicle_types(request):
    vehicle_types = VehicleType.objects.filter(is_active=True)
    return Response(VehicleTypeSerializer(vehicle_types, many=True).data)


# ==================== Customer Delivery APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_delivery(request):
    """Book a delivery; it is offered to the nearest eligible driver right away"""
    denied = _role_required(request, 'customer', 'book deliveries')
    if denied:
        return denied

    serializer = DeliveryCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    fields = dict(serializer.validated_data)
    vehicle_type = fields.pop('vehicle_type', None)
    result = lifecycle.create_delivery(request.user, vehicle_type=vehicle_type, **fields)
    return _delivery_response(result, request, status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_current_deliveries(request):
    """
    Customer's unfinished deliveries (POLLING / RECONCILE ENDPOINT)

    Clients call this after reconnecting to pick up any update they missed.
    """
    denied = _role_required(request, 'customer', 'access this endpoint')
    if denied:
        return denied

    deliveries = lifecycle.get_customer_active_deliveries(request.user)
    serializer = DeliverySerializer(deliveries, many=True, context={'request': request})
    return Response({
        'has_active_delivery': bool(serializer.data),
        'count': len(serializer.data),
        'deliveries': serializer.data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_delivery(request, delivery_id):
    """Cancel a delivery (its customer or an operator)"""
    serializer = DeliveryCancelSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = lifecycle.cancel_delivery(
            request.user,
            delivery_id,
            serializer.validated_data.get('reason') or 'No reason provided',
        )
    except CoordinationError as exc:
        return error_response(exc)
    return _delivery_response(result, request)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def delivery_detail(request, delivery_id):
    """Current state of one delivery, for its customer, its driver or an operator"""
    deliveries = Delivery.objects.select_related('customer', 'driver__driver_profile', 'vehicle_type')
    if not request.user.is_operator:
        deliveries = deliveries.filter(Q(customer=request.user) | Q(driver=request.user))

    delivery = deliveries.filter(id=delivery_id).first()
    if delivery is None:
        return Response({'error': 'Delivery not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(DeliverySerializer(delivery, context={'request': request}).data)


# ==================== Driver Delivery Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_delivery(request, delivery_id):
    """Accept the delivery offered to this driver; 409 if the offer is gone"""
    denied = _role_required(request, 'driver', 'accept deliveries')
    if denied:
        return denied

    try:
        result = lifecycle.accept_offer(request.user, delivery_id)
    except CoordinationError as exc:
        return error_response(exc)
    return _delivery_response(result, request)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def decline_delivery(request, delivery_id):
    """Decline the delivery offered to this driver; it is offered to someone else"""
    denied = _role_required(request, 'driver', 'decline deliveries')
    if denied:
        return denied

    try:
        result = lifecycle.decline_offer(request.user, delivery_id)
    except CoordinationError as exc:
        return error_response(exc)

    return Response({
        'success': True,
        'delivery_id': delivery_id,
        'message': result.message,
        **(result.extra or {}),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def update_delivery_status(request, delivery_id):
    """
    Move an assigned delivery one stage forward

    driver_assigned -> pickup_arrived -> package_collected -> in_transit -> delivered
    """
    denied = _role_required(request, 'driver', 'update deliveries')
    if denied:
        return denied

    serializer = DeliveryStatusSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = lifecycle.advance_status(
            request.user,
            delivery_id,
            serializer.validated_data['status'],
            fix=_fix_from(serializer.validated_data),
        )
    except CoordinationError as exc:
        return error_response(exc)
    return _delivery_response(result, request)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_delivery(request, delivery_id):
    """
    Complete a delivery with proof of delivery - CALLED BY DRIVER

    Only valid while the delivery is in transit.
    """
    denied = _role_required(request, 'driver', 'complete deliveries')
    if denied:
        return denied

    serializer = ProofOfDeliverySerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        result = lifecycle.complete_delivery(
            request.user,
            delivery_id,
            fix=_fix_from(data),
            recipient_name=data.get('recipient_name', ''),
            proof_photo_url=data.get('proof_photo_url', ''),
            delivery_notes=data.get('delivery_notes', ''),
            signature_data=data.get('signature_data', ''),
        )
    except CoordinationError as exc:
        return error_response(exc)
    return _delivery_response(result, request)
