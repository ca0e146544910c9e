from rest_framework import views
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.riders.permissions import IsDeliveryPartner, IsPlatformStaff
from apps.riders.services import PartnerService
from apps.utils.dates import parse_range
from .serializers import EarningsSummarySerializer
from .services import EarningsAggregator


class MyEarningsView(views.APIView):
    """
    Dashboard numbers for the logged-in partner.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def get(self, request):
        partner = PartnerService.get_for_user(request.user)
        start, end = parse_range(request.query_params)
        summary = EarningsAggregator.get_summary(partner.id, start, end)
        return Response(EarningsSummarySerializer(summary).data)


class PartnerEarningsView(views.APIView):
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def get(self, request, partner_id):
        start, end = parse_range(request.query_params)
        summary = EarningsAggregator.get_summary(partner_id, start, end)
        return Response(EarningsSummarySerializer(summary).data)
