from rest_framework import status, views
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.riders.permissions import IsDeliveryPartner, IsPlatformStaff
from apps.riders.services import PartnerService
from .serializers import (
    EtaQuerySerializer,
    LocationSampleSerializer,
    PartnerLocationSerializer,
    RouteEstimateSerializer,
    StartTrackingSerializer,
    TrackingSessionSerializer,
)
from .services import LocationTracker
from .throttle import LocationReportThrottle


class StartTrackingView(views.APIView):
    """
    Partner goes online. The app sends the OS location permission state.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def post(self, request):
        partner = PartnerService.get_for_user(request.user)
        serializer = StartTrackingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = LocationTracker.start(partner.id, serializer.validated_data['permission'])
        return Response(TrackingSessionSerializer(session).data, status=status.HTTP_200_OK)


class StopTrackingView(views.APIView):
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def post(self, request):
        partner = PartnerService.get_for_user(request.user)
        stopped = LocationTracker.stop(partner.id)
        return Response({"stopped": stopped})


class ReportLocationView(views.APIView):
    """
    Partner app calls this every few seconds while online.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]
    throttle_classes = [LocationReportThrottle]

    def post(self, request):
        partner = PartnerService.get_for_user(request.user)
        serializer = LocationSampleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = LocationTracker.report(
            partner.id,
            data['lat'],
            data['lng'],
            heading=data.get('heading'),
            sampled_at=data.get('sampled_at'),
            accuracy=data.get('accuracy'),
        )
        return Response({"accepted": result.accepted, "outcome": result.outcome})


class PartnerLocationView(views.APIView):
    """
    Last known position of a partner, for ops dashboards.
    Still answers after the partner goes offline.
    """
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def get(self, request, partner_id):
        location = LocationTracker.get_latest_location(partner_id)
        return Response(PartnerLocationSerializer(location).data)


class PartnerEtaView(views.APIView):
    permission_classes = [IsAuthenticated, IsPlatformStaff]

    def get(self, request, partner_id):
        serializer = EtaQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        estimate = LocationTracker.estimate_eta(
            partner_id, serializer.validated_data['lat'], serializer.validated_data['lng']
        )
        return Response(RouteEstimateSerializer(estimate).data)
