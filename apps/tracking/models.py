from django.db import models
from apps.utils.models import TimestampedModel


class SessionState(models.TextChoices):
    ACTIVE = "ACTIVE", "Sharing Location"
    STOPPED = "STOPPED", "Stopped"


class TrackingMode(models.TextChoices):
    STANDARD = "STANDARD", "Standard"
    NAVIGATION = "NAVIGATION", "Navigation"


class TrackingSession(TimestampedModel):
    """
    One row per partner. A partner is 'online' while the session is ACTIVE.
    """
    partner = models.OneToOneField(
        'riders.DeliveryPartner', on_delete=models.CASCADE, related_name='tracking_session'
    )
    state = models.CharField(max_length=10, choices=SessionState.choices, default=SessionState.ACTIVE)
    mode = models.CharField(max_length=12, choices=TrackingMode.choices, default=TrackingMode.STANDARD)
    started_at = models.DateTimeField()
    stopped_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.partner_id} | {self.state} ({self.mode})"

    @property
    def is_active(self):
        return self.state == SessionState.ACTIVE


class PartnerLocation(models.Model):
    """
    Latest accepted sample per partner. Older samples are overwritten, not kept.
    """
    partner = models.OneToOneField(
        'riders.DeliveryPartner', on_delete=models.CASCADE, related_name='location'
    )
    lat = models.FloatField()
    lng = models.FloatField()
    heading = models.FloatField(null=True, blank=True)
    accuracy = models.FloatField(null=True, blank=True, help_text="Meters, as reported by the device")
    sampled_at = models.DateTimeField()
    received_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.partner_id} @ ({self.lat:.5f}, {self.lng:.5f})"
