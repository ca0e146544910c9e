from rest_framework import views
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from .permissions import IsDeliveryPartner
from .serializers import DeliveryPartnerSerializer
from .services import PartnerService


class PartnerProfileView(views.APIView):
    """
    The logged-in partner's own profile.
    """
    permission_classes = [IsAuthenticated, IsDeliveryPartner]

    def get(self, request):
        partner = PartnerService.get_for_user(request.user)
        return Response(DeliveryPartnerSerializer(partner).data)
