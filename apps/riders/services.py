from django.core.exceptions import ValidationError

from .models import DeliveryPartner
from apps.utils.exceptions import NotFound


class PartnerService:

    @staticmethod
    def get_partner(partner_id) -> DeliveryPartner:
        try:
            return DeliveryPartner.objects.get(id=partner_id)
        except (DeliveryPartner.DoesNotExist, ValidationError):
            raise NotFound(f"Delivery partner {partner_id} not found.")

    @staticmethod
    def get_for_user(user) -> DeliveryPartner:
        try:
            return user.delivery_partner
        except DeliveryPartner.DoesNotExist:
            raise NotFound("Delivery partner profile does not exist.")

    @staticmethod
    def lock_partner(partner_id) -> DeliveryPartner:
        """
        Row lock used to serialize per-partner money writes.
        Must be called inside a transaction.
        """
        try:
            return DeliveryPartner.objects.select_for_update().get(id=partner_id)
        except (DeliveryPartner.DoesNotExist, ValidationError):
            raise NotFound(f"Delivery partner {partner_id} not found.")
