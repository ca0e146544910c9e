from rest_framework.permissions import BasePermission
from .models import DeliveryPartner


class IsDeliveryPartner(BasePermission):
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        try:
            return request.user.delivery_partner.is_approved
        except DeliveryPartner.DoesNotExist:
            return False


class IsPlatformStaff(BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.is_staff
