from django.db import models
from django.db.models import Q
from django.core.validators import MinValueValidator, MaxValueValidator
from apps.utils.models import TimestampedModel, ImmutableModel


class DeliveryStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    ACCEPTED = "ACCEPTED", "Accepted by Partner"
    PICKED_UP = "PICKED_UP", "Picked Up"
    ON_THE_WAY = "ON_THE_WAY", "On the Way"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"


class Delivery(TimestampedModel):
    """
    Manages the lifecycle of a single delivery from store to customer.
    Only DeliveryService writes to this table.
    """
    # Relationships
    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='deliveries')
    partner = models.ForeignKey(
        'riders.DeliveryPartner',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='deliveries',
    )

    # State
    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
    )

    # Snapshots taken at creation; later order edits do not reach in-flight deliveries
    pickup_address = models.TextField()
    delivery_address = models.TextField()
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2)
    estimated_delivery_time = models.DateTimeField(null=True, blank=True)

    # Timestamps for SLA tracking
    assigned_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    departed_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    # Feedback
    rating = models.PositiveIntegerField(null=True, blank=True, validators=[MinValueValidator(1), MaxValueValidator(5)])
    review = models.TextField(blank=True)

    class Meta:
        verbose_name_plural = "Deliveries"
        constraints = [
            # Reassignment creates a new row; only one may be live per order
            models.UniqueConstraint(
                fields=['order'],
                condition=~Q(status=DeliveryStatus.CANCELLED),
                name='unique_live_delivery_per_order',
            ),
        ]
        indexes = [
            models.Index(fields=['partner', 'status']),
            models.Index(fields=['partner', 'created_at']),
        ]

    def __str__(self):
        return f"Delivery {self.id} | {self.status}"

    @property
    def is_terminal(self):
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)


class DeliveryStatusEvent(ImmutableModel):
    """
    Append-only audit trail of status changes.
    """
    delivery = models.ForeignKey(Delivery, on_delete=models.PROTECT, related_name='status_history')
    sequence = models.PositiveIntegerField()
    status = models.CharField(max_length=20, choices=DeliveryStatus.choices)
    note = models.TextField(blank=True)

    class Meta:
        ordering = ['delivery', 'sequence']
        constraints = [
            models.UniqueConstraint(fields=['delivery', 'sequence'], name='unique_status_event_sequence'),
        ]

    def __str__(self):
        return f"{self.delivery_id} #{self.sequence} {self.status}"


class TransitionRequest(models.Model):
    """
    Idempotency record: one row per successfully applied (delivery, key).
    """
    delivery = models.ForeignKey(Delivery, on_delete=models.CASCADE, related_name='transition_requests')
    idempotency_key = models.CharField(max_length=100)
    target_status = models.CharField(max_length=20, choices=DeliveryStatus.choices)
    resulting_status = models.CharField(max_length=20, choices=DeliveryStatus.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['delivery', 'idempotency_key'], name='unique_transition_key'),
        ]

    def __str__(self):
        return f"{self.delivery_id} [{self.idempotency_key}] -> {self.resulting_status}"
