from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel


class DeliveryPartner(TimestampedModel):
    """
    Identity row for a delivery partner.
    Deliveries, ledger events and tracking sessions all reference it.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='delivery_partner',
        null=True,
        blank=True,
    )
    full_name = models.CharField(max_length=255)
    phone = models.CharField(max_length=15, unique=True, db_index=True)
    is_approved = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Delivery Partner"
        verbose_name_plural = "Delivery Partners"

    def __str__(self):
        return f"{self.full_name} ({self.phone})"
