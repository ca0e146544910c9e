from rest_framework import status, views
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.riders.permissions import IsDeliveryPartner, IsPlatformStaff
from apps.riders.services import PartnerService
from apps.utils.dates import parse_range
from .models import SettlementSource
from .serializers import (
    CODCollectionSerializer,
    CODSettlementSerializer,
    LedgerSummarySerializer,
    PlatformSettlementSerializer,
    RecordCollectionSerializer,
    RecordSettlementSerializer,
)
from .services import CODLedger


class CollectCashView(views.APIView):
    """
    Partner confirms the customer paid in cash at the door.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def post(self, request):
        partner = PartnerService.get_for_user(request.user)
        serializer = RecordCollectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        collection = CODLedger.record_collection(
            order_id=data['order_id'],
            delivery_id=data['delivery_id'],
            partner_id=partner.id,
            amount=data['amount'],
        )
        return Response(CODCollectionSerializer(collection).data, status=status.HTTP_201_CREATED)


class SubmitCashView(views.APIView):
    """
    Partner remits collected cash to the platform.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def post(self, request):
        partner = PartnerService.get_for_user(request.user)
        serializer = RecordSettlementSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        settlement = CODLedger.record_settlement(
            partner_id=partner.id,
            amount=data['amount'],
            order_ids=data.get('order_ids') or (),
            submitted_by=SettlementSource.PARTNER,
            reference=data.get('reference', ''),
        )
        return Response(CODSettlementSerializer(settlement).data, status=status.HTTP_201_CREATED)


class LedgerSummaryView(views.APIView):
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def get(self, request):
        partner = PartnerService.get_for_user(request.user)
        start, end = parse_range(request.query_params)
        summary = CODLedger.summary(partner.id, start, end)
        data = LedgerSummarySerializer(summary).data
        data['outstanding_balance'] = str(CODLedger.outstanding_balance(partner.id))
        return Response(data)


class PlatformSettlementView(views.APIView):
    """
    Ops records a cash deposit on a partner's behalf.
    """
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def post(self, request):
        serializer = PlatformSettlementSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        settlement = CODLedger.record_settlement(
            partner_id=data['partner_id'],
            amount=data['amount'],
            order_ids=data.get('order_ids') or (),
            submitted_by=SettlementSource.PLATFORM,
            reference=data.get('reference', ''),
        )
        return Response(CODSettlementSerializer(settlement).data, status=status.HTTP_201_CREATED)
