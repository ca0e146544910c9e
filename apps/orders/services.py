import logging
from dataclasses import dataclass
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.utils import timezone

from apps.utils.exceptions import NotFound
from .models import Order, PaymentMethod, PaymentStatus
from .signals import payment_confirmation_requested

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSnapshot:
    """
    Value copy of an order's payment fields.
    Callers get this instead of a live Order they could mutate.
    """
    order_id: str
    order_number: str
    payment_method: str
    payment_status: str
    total_amount: Decimal

    @property
    def is_cod(self):
        return self.payment_method == PaymentMethod.COD


class OrderService:
    """
    The narrow slice of the Order/Payment service this core may call.
    """

    @staticmethod
    def get_order(order_id) -> Order:
        try:
            return Order.objects.get(id=order_id)
        except (Order.DoesNotExist, ValidationError):
            raise NotFound(f"Order {order_id} not found.")

    @staticmethod
    def lock_order(order_id) -> Order:
        """
        Row lock used to serialize per-order ledger writes.
        Must be called inside a transaction.
        """
        try:
            return Order.objects.select_for_update().get(id=order_id)
        except (Order.DoesNotExist, ValidationError):
            raise NotFound(f"Order {order_id} not found.")

    @staticmethod
    def get_payment_snapshot(order_id) -> PaymentSnapshot:
        order = OrderService.get_order(order_id)
        return PaymentSnapshot(
            order_id=str(order.id),
            order_number=order.order_number,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
        )

    @staticmethod
    def mark_cod_collected(order: Order, collected_at=None):
        """
        Cash is in the partner's hands: the order counts as paid.
        """
        if order.payment_status == PaymentStatus.COMPLETED:
            return order

        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = collected_at or timezone.now()
        order.save(update_fields=['payment_status', 'paid_at', 'updated_at'])
        logger.info("Order %s marked paid via COD", order.id, extra={"order_id": order.id})
        return order

    @staticmethod
    def request_payment_confirmation(order_id):
        """
        Ask the payment service to confirm an ONLINE order after delivery.
        Only records the request; the payment service decides the status.
        """
        updated = Order.objects.filter(
            id=order_id,
            payment_method=PaymentMethod.ONLINE,
            payment_status=PaymentStatus.PENDING,
            payment_confirmation_requested_at__isnull=True,
        ).update(payment_confirmation_requested_at=timezone.now())

        if updated:
            payment_confirmation_requested.send(sender=OrderService, order_id=str(order_id))
            logger.info("Payment confirmation requested for order %s", order_id)
        return bool(updated)
