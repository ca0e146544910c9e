from django.db import models
from apps.utils.models import TimestampedModel


class PaymentMethod(models.TextChoices):
    COD = "COD", "Cash on Delivery"
    ONLINE = "ONLINE", "Online"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"


class Order(TimestampedModel):
    """
    Read model of the marketplace order.
    Owned by the Order/Payment service; this core only reads the payment
    fields and flips them through OrderService.
    """
    order_number = models.CharField(max_length=50, unique=True, db_index=True)

    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    payment_method = models.CharField(max_length=10, choices=PaymentMethod.choices)
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    paid_at = models.DateTimeField(null=True, blank=True)

    # Set when a delivered ONLINE order asks the payment service to confirm capture
    payment_confirmation_requested_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.order_number} [{self.payment_method}/{self.payment_status}]"

    @property
    def is_cod(self):
        return self.payment_method == PaymentMethod.COD
