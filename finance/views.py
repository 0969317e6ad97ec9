"""
Finance App Views - Courier Ledger & Financial Reports API
"""

from rest_framework import mixins, viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from django.contrib.auth import get_user_model

from core.exceptions import ShipmentNotFoundError
from core.models import UserRole
from core.permissions import (
    CanAccessAdminFinancials,
    Permission,
    capability_required,
    require_permission,
)

from .models import CourierTransaction, CourierTransactionStatus, CourierTransactionType
from .reports import (
    get_admin_financials,
    get_client_financials,
    get_courier_financials,
)
from .serializers import (
    AdminFinancialsSerializer,
    ClientFinancialsSerializer,
    CommissionSettingsSerializer,
    CourierFinancialsSerializer,
    CourierStatsSerializer,
    CourierTransactionSerializer,
    PayoutRequestSerializer,
    PenaltySerializer,
    RestrictionSerializer,
)
from .services import CourierLedger, visible_transactions

User = get_user_model()


class CourierViewSet(viewsets.GenericViewSet):
    """
    Ledger operations on one courier.

    Permission checks live in CourierLedger; the views only parse input.
    """

    queryset = User.objects.filter(role=UserRole.COURIER)

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        """Commission settings and running totals."""
        courier = self.get_object()
        if courier.pk != request.user.pk:
            require_permission(request.user, Permission.MANAGE_COURIER_PAYOUTS)
        else:
            require_permission(request.user, Permission.VIEW_COURIER_EARNINGS)
        return Response(CourierStatsSerializer(CourierLedger.get_stats(courier)).data)

    @action(detail=True, methods=['post'])
    def penalty(self, request, pk=None):
        """Apply a manual penalty."""
        courier = self.get_object()
        serializer = PenaltySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        shipment = None
        if data.get('shipment'):
            from logistics.models import Shipment
            shipment = Shipment.objects.filter(pk=data['shipment']).first()
            if shipment is None:
                raise ShipmentNotFoundError(data['shipment'])

        tx = CourierLedger.apply_manual_penalty(
            request.user, courier, data['amount'], data['reason'], shipment=shipment
        )
        return Response(CourierTransactionSerializer(tx).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def payouts(self, request, pk=None):
        """Request a payout (courier for self, or a payout manager)."""
        courier = self.get_object()
        serializer = PayoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        tx = CourierLedger.request_payout(request.user, courier, serializer.validated_data['amount'])
        return Response(CourierTransactionSerializer(tx).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['put'], url_path='settings')
    def commission_settings(self, request, pk=None):
        """Change commission type/value for future assignments."""
        courier = self.get_object()
        serializer = CommissionSettingsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stats = CourierLedger.update_commission_settings(
            request.user,
            courier,
            commission_type=serializer.validated_data.get('commission_type'),
            commission_value=serializer.validated_data.get('commission_value'),
        )
        return Response(CourierStatsSerializer(stats).data)

    @action(detail=True, methods=['put'])
    def restriction(self, request, pk=None):
        """Restrict a courier or lift the restriction."""
        courier = self.get_object()
        serializer = RestrictionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        stats = CourierLedger.set_restriction(
            request.user,
            courier,
            serializer.validated_data['is_restricted'],
            serializer.validated_data.get('reason', ''),
        )
        return Response(CourierStatsSerializer(stats).data)


class PayoutViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    Withdrawal requests awaiting processing.

    - List: pending requests (payout managers)
    - process: mark processed and debit the courier
    """

    serializer_class = CourierTransactionSerializer
    queryset = CourierTransaction.objects.filter(
        transaction_type=CourierTransactionType.WITHDRAWAL_REQUEST,
        status=CourierTransactionStatus.PENDING,
    )

    def get_permissions(self):
        if self.action == 'list':
            return [capability_required(Permission.MANAGE_COURIER_PAYOUTS)()]
        return super().get_permissions()

    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        tx = CourierLedger.process_payout(request.user, pk)
        return Response(CourierTransactionSerializer(tx).data)


class CourierTransactionViewSet(viewsets.ReadOnlyModelViewSet):
    """Courier ledger history: own rows for couriers, everything for payout managers."""

    serializer_class = CourierTransactionSerializer
    filterset_fields = ['transaction_type', 'status', 'courier']
    ordering_fields = ['timestamp', 'amount']

    def get_queryset(self):
        return visible_transactions(self.request.user)


class FinancialsViewSet(viewsets.ViewSet):
    """Financial Aggregator endpoints."""

    @action(detail=False, methods=['get'], permission_classes=[CanAccessAdminFinancials])
    def admin(self, request):
        """Admin-wide revenue (admin only)."""
        return Response(AdminFinancialsSerializer(get_admin_financials(request.user)).data)

    @action(detail=False, methods=['get'])
    def clients(self, request):
        """Per-client order totals."""
        rows = get_client_financials(request.user)
        return Response(ClientFinancialsSerializer(rows, many=True).data)

    @action(
        detail=False,
        methods=['get'],
        url_path=r'couriers/(?P<courier_id>[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})'
    )
    def courier(self, request, courier_id=None):
        """Ledger summary for one courier."""
        courier = User.objects.filter(pk=courier_id, role=UserRole.COURIER).first()
        if courier is None:
            return Response({'error': 'Courier not found.'}, status=status.HTTP_404_NOT_FOUND)
        return Response(CourierFinancialsSerializer(get_courier_financials(request.user, courier)).data)
