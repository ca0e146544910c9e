from rest_framework import status
from apps.utils.exceptions import BusinessLogicException


class InvalidTransition(BusinessLogicException):
    """
    Illegal edge in the delivery graph. A client bug: log it, don't retry.
    """
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message, current_status=None, target_status=None):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message, code="invalid_transition")


class CollectionRequired(BusinessLogicException):
    """
    COD cash has not been recorded yet. Retry once the collection is in.
    """
    http_status = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, order_id, amount_due, amount_collected):
        self.order_id = order_id
        self.amount_due = amount_due
        self.amount_collected = amount_collected
        super().__init__(
            "Collect cash before completing this delivery.",
            code="collection_required",
        )
