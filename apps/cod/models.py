from django.db import models
from django.utils import timezone
from apps.utils.models import ImmutableModel


class CODCollection(ImmutableModel):
    """
    Cash received by a partner at the door. One per order, never edited.
    """
    order = models.OneToOneField('orders.Order', on_delete=models.PROTECT, related_name='cod_collection')
    delivery = models.ForeignKey('delivery.Delivery', on_delete=models.PROTECT, related_name='cod_collections')
    partner = models.ForeignKey('riders.DeliveryPartner', on_delete=models.PROTECT, related_name='cod_collections')

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    collected_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['collected_at']
        indexes = [
            models.Index(fields=['partner', 'collected_at']),
        ]

    def __str__(self):
        return f"COD {self.order_id} | {self.amount}"


class SettlementSource(models.TextChoices):
    PARTNER = "PARTNER", "Submitted by Partner"
    PLATFORM = "PLATFORM", "Recorded by Platform"


class CODSettlement(ImmutableModel):
    """
    Cash remitted by a partner to the platform.
    `collections` lists the collections it explicitly covers; an empty set
    is a lump-sum remittance applied oldest-first.
    """
    partner = models.ForeignKey('riders.DeliveryPartner', on_delete=models.PROTECT, related_name='cod_settlements')

    amount = models.DecimalField(max_digits=10, decimal_places=2)
    submitted_at = models.DateTimeField(default=timezone.now, db_index=True)
    submitted_by = models.CharField(max_length=10, choices=SettlementSource.choices, default=SettlementSource.PARTNER)
    reference = models.CharField(max_length=100, blank=True)

    collections = models.ManyToManyField(CODCollection, blank=True, related_name='settlements')

    class Meta:
        ordering = ['submitted_at']
        indexes = [
            models.Index(fields=['partner', 'submitted_at']),
        ]

    def __str__(self):
        return f"Settlement {self.partner_id} | {self.amount}"
