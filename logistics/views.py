"""
Logistics App Views - Shipments API
"""

from rest_framework import mixins, viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from django.contrib.auth import get_user_model

from core.exceptions import CourierNotFoundError
from core.models import UserRole
from finance.serializers import CourierTransactionSerializer
from finance.services import CourierLedger

from .models import Shipment
from .serializers import (
    ShipmentCreateSerializer,
    ShipmentFeesSerializer,
    ShipmentSerializer,
    ShipmentTransitionSerializer,
)
from .services.state_machine import (
    create_shipment,
    overdue_shipments,
    transition_shipment,
    update_shipment_fees,
)
from .visibility import filter_shipments

User = get_user_model()


class ShipmentViewSet(mixins.ListModelMixin,
                      mixins.RetrieveModelMixin,
                      mixins.CreateModelMixin,
                      viewsets.GenericViewSet):
    """
    ViewSet for Shipment management.

    Rows are limited to what the caller may see; status and fees only
    change through the state machine actions below.
    """

    queryset = Shipment.objects.all()
    serializer_class = ShipmentSerializer
    filterset_fields = ['status', 'payment_method', 'destination_city', 'priority', 'courier', 'client']
    search_fields = ['id', 'recipient_name', 'recipient_phone']
    ordering_fields = ['creation_date', 'price', 'delivery_date']

    def get_queryset(self):
        return filter_shipments(
            self.request.user,
            Shipment.objects.select_related('client', 'courier')
        )

    def create(self, request, *args, **kwargs):
        """Create a shipment (status WAITING_FOR_PACKAGING)."""
        serializer = ShipmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)

        client_id = data.pop('client', None)
        client = None
        if client_id is not None:
            client = User.objects.filter(pk=client_id).first()
            if client is None:
                return Response(
                    {'error': 'Client not found.'},
                    status=status.HTTP_400_BAD_REQUEST
                )

        shipment = create_shipment(request.user, client=client, **data)
        return Response(
            ShipmentSerializer(shipment, context=self.get_serializer_context()).data,
            status=status.HTTP_201_CREATED
        )

    @action(detail=True, methods=['post'])
    def transition(self, request, pk=None):
        """Move the shipment to another status."""
        serializer = ShipmentTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        courier = None
        if data.get('courier'):
            courier = User.objects.filter(pk=data['courier'], role=UserRole.COURIER).first()
            if courier is None:
                raise CourierNotFoundError(data['courier'])

        shipment = transition_shipment(
            request.user,
            pk,
            data['status'],
            courier=courier,
            failure_reason=data.get('failure_reason', ''),
        )
        return Response(ShipmentSerializer(shipment, context=self.get_serializer_context()).data)

    @action(detail=True, methods=['put'])
    def fees(self, request, pk=None):
        """Override client fee and/or courier commission (admin)."""
        serializer = ShipmentFeesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        shipment = update_shipment_fees(
            request.user,
            pk,
            client_flat_rate_fee=serializer.validated_data.get('client_flat_rate_fee'),
            courier_commission=serializer.validated_data.get('courier_commission'),
        )
        return Response(ShipmentSerializer(shipment, context=self.get_serializer_context()).data)

    @action(detail=True, methods=['post'], url_path='failed-delivery-penalty')
    def failed_delivery_penalty(self, request, pk=None):
        """Charge the courier the declared value of a failed delivery."""
        shipment = self.get_object()
        tx = CourierLedger.apply_failed_delivery_penalty(
            request.user, shipment, description=request.data.get('description', '')
        )
        return Response(CourierTransactionSerializer(tx).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def overdue(self, request):
        """Visible shipments still open past the overdue threshold."""
        queryset = filter_shipments(request.user, overdue_shipments()).select_related('client', 'courier')
        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = self.get_serializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        return Response(self.get_serializer(queryset, many=True).data)
