from rest_framework import status
from apps.utils.exceptions import BusinessLogicException


class LocationPermissionDenied(BusinessLogicException):
    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, message="Location permission is required to go online."):
        super().__init__(message, code="location_permission_denied")


class NotTracking(BusinessLogicException):
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, partner_id):
        self.partner_id = partner_id
        super().__init__(f"Partner {partner_id} is not sharing location.", code="not_tracking")
