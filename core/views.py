"""
Core App Views - User Management API
"""

from rest_framework import mixins, viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from django.contrib.auth import get_user_model

from .models import UserRole, update_client_flat_rate
from .permissions import Permission, capability_required, has_permission
from .serializers import FlatRateSerializer, UserCreateSerializer, UserSerializer

User = get_user_model()


class UserViewSet(mixins.ListModelMixin,
                  mixins.RetrieveModelMixin,
                  mixins.CreateModelMixin,
                  viewsets.GenericViewSet):
    """
    ViewSet for User model.

    - List/Retrieve: user managers see everyone, others themselves
    - Create: user managers only
    - couriers: couriers available for assignment
    """

    queryset = User.objects.all()
    serializer_class = UserSerializer
    filterset_fields = ['role', 'is_active']
    search_fields = ['email', 'full_name', 'phone_number']

    def get_permissions(self):
        if self.action == 'create':
            return [capability_required(Permission.MANAGE_USERS)()]
        if self.action == 'couriers':
            return [capability_required(Permission.ASSIGN_SHIPMENTS)()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == 'create':
            return UserCreateSerializer
        return UserSerializer

    def get_queryset(self):
        user = self.request.user
        if has_permission(user, Permission.MANAGE_USERS):
            return User.objects.all()
        # Everyone else only sees their own profile
        return User.objects.filter(pk=user.pk)

    @action(detail=False, methods=['get'])
    def me(self, request):
        """Get current user profile."""
        serializer = self.get_serializer(request.user)
        return Response(serializer.data)

    @action(detail=False, methods=['get'])
    def couriers(self, request):
        """Active couriers with their restriction flag."""
        from finance.models import CourierStats

        couriers = User.objects.filter(role=UserRole.COURIER, is_active=True).order_by('full_name')
        restricted = set(
            CourierStats.objects.filter(is_restricted=True).values_list('courier_id', flat=True)
        )
        return Response([
            {
                'id': str(courier.pk),
                'full_name': courier.full_name,
                'email': courier.email,
                'is_restricted': courier.pk in restricted,
            }
            for courier in couriers
        ])


class ClientViewSet(viewsets.GenericViewSet):
    """Client fee policy management."""

    queryset = User.objects.filter(role=UserRole.CLIENT)
    serializer_class = FlatRateSerializer

    @action(detail=True, methods=['put'], url_path='flat-rate')
    def flat_rate(self, request, pk=None):
        """Change the flat rate fee applied to this client's future assignments."""
        client = self.get_object()
        serializer = FlatRateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        client = update_client_flat_rate(
            request.user, client, serializer.validated_data['flat_rate_fee']
        )
        return Response(
            {'client_id': str(client.pk), 'flat_rate_fee': str(client.flat_rate_fee)},
            status=status.HTTP_200_OK
        )
