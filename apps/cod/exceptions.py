from rest_framework import status
from apps.utils.exceptions import BusinessLogicException


class DuplicateCollection(BusinessLogicException):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"COD for order {order_id} is already collected.", code="duplicate_collection")


class InsufficientCollection(BusinessLogicException):
    def __init__(self, order_id, amount, amount_due):
        self.order_id = order_id
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(
            f"Collected amount {amount} is less than the order total {amount_due}.",
            code="insufficient_collection",
        )


class Oversettlement(BusinessLogicException):
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, partner_id, amount, outstanding):
        self.partner_id = partner_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Cannot submit {amount}: only {outstanding} is outstanding.",
            code="oversettlement",
        )


class SettlementMismatch(BusinessLogicException):
    def __init__(self, message):
        super().__init__(message, code="settlement_mismatch")
