from rest_framework import viewsets, status, views
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.riders.permissions import IsDeliveryPartner, IsPlatformStaff
from apps.utils.exceptions import BusinessLogicException
from .models import Delivery
from .serializers import (
    AssignPartnerSerializer,
    DeliveryCreateSerializer,
    DeliverySerializer,
    DeliveryStatusEventSerializer,
    RatingSerializer,
    TransitionSerializer,
)
from .services import DeliveryService
from .state_machine import ACTIONS


def _idempotency_key(request, data):
    key = request.headers.get('Idempotency-Key') or data.get('idempotency_key')
    if not key:
        raise BusinessLogicException(
            "Idempotency-Key header is required.", code="idempotency_key_required"
        )
    return key


class DeliveryViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Partner API for working through assigned deliveries.
    Every state-changing action needs an Idempotency-Key.
    """
    serializer_class = DeliverySerializer
    permission_classes = [IsAuthenticated, IsDeliveryPartner]
    filterset_fields = ['status']

    def get_queryset(self):
        return (
            Delivery.objects
            .filter(partner__user=self.request.user)
            .select_related('order', 'partner')
            .order_by('-created_at')
        )

    def _transition(self, request, action_name):
        # Ownership check: 404 for deliveries that belong to someone else
        delivery = self.get_object()
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DeliveryService.request_transition(
            delivery.id,
            ACTIONS[action_name],
            _idempotency_key(request, serializer.validated_data),
            reason=serializer.validated_data.get('reason', ''),
        )
        return Response(
            {"delivery_id": result.delivery_id, "status": result.status, "replayed": result.replayed},
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        return self._transition(request, 'accept')

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        return self._transition(request, 'reject')

    @action(detail=True, methods=['post'])
    def pickup(self, request, pk=None):
        return self._transition(request, 'pickup')

    @action(detail=True, methods=['post'])
    def depart(self, request, pk=None):
        return self._transition(request, 'depart')

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        return self._transition(request, 'complete')

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        delivery = self.get_object()
        events = DeliveryService.status_history(delivery.id)
        return Response(DeliveryStatusEventSerializer(events, many=True).data)


class DeliveryCreateView(views.APIView):
    """
    Dispatch creates the delivery once the order is ready for pickup.
    """
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def post(self, request):
        serializer = DeliveryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        delivery = DeliveryService.create_delivery(**serializer.validated_data)
        return Response(DeliverySerializer(delivery).data, status=status.HTTP_201_CREATED)


class AssignPartnerView(views.APIView):
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def post(self, request, pk):
        serializer = AssignPartnerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        delivery = DeliveryService.assign_partner(pk, serializer.validated_data['partner_id'])
        return Response(DeliverySerializer(delivery).data)


class RateDeliveryView(views.APIView):
    """
    Customer feedback after delivery. Staff-only here; the customer app
    proxies it.
    """
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def post(self, request, pk):
        serializer = RatingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        delivery = DeliveryService.rate_delivery(
            pk,
            serializer.validated_data['rating'],
            serializer.validated_data.get('review', ''),
        )
        return Response(DeliverySerializer(delivery).data)
