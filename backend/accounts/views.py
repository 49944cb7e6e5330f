from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken

from .serializers import RegisterSerializer, LoginSerializer, UserSerializer


def _token_pair(user):
    refresh = RefreshToken.for_user(user)
    return {
        'refresh': str(refresh),
        'access': str(refresh.access_token),
    }


def _account_payload(user, request=None):
    payload = {'user': UserSerializer(user, context={'request': request}).data}
    profile = getattr(user, 'driver_profile', None) if user.role == 'driver' else None
    if profile is not None:
        # Unverified drivers can log in but cannot go online
        payload['driver'] = {
            'vehicle_number': profile.vehicle_number,
            'is_verified': profile.is_verified,
            'is_online': profile.is_online,
        }
    return payload


class RegisterView(APIView):
    """
    Register a new customer or driver account.

    POST Body:
    {
        "username": "juan",
        "email": "juan@example.com",
        "password": "password123",
        "role": "customer",  // or "driver"
        "phone_number": "+639171234567",
        "vehicle_number": "NCR-1234"  // required for drivers
    }
    """
    permission_classes = (AllowAny,)
    authentication_classes = []

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        user = serializer.save()
        return Response({
            'message': 'Account registered successfully',
            **_account_payload(user, request),
            'tokens': _token_pair(user),
        }, status=status.HTTP_201_CREATED)


class LoginView(APIView):
    """Exchange username/password for a JWT pair."""
    permission_classes = (AllowAny,)
    authentication_classes = []

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.validated_data

        return Response({
            "message": "Login successful",
            **_account_payload(user, request),
            "tokens": _token_pair(user),
        }, status=status.HTTP_200_OK)


class RefreshTokenView(APIView):
    permission_classes = (AllowAny,)
    authentication_classes = []

    def post(self, request):
        refresh_token = request.data.get('refresh')
        if not refresh_token:
            return Response(
                {'error': 'Refresh token is required'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            refresh = RefreshToken(refresh_token)
        except TokenError:
            return Response(
                {'error': 'Invalid refresh token'},
                status=status.HTTP_401_UNAUTHORIZED
            )
        return Response({'access': str(refresh.access_token)})
