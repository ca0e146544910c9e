from django.contrib import admin
from .models import PartnerLocation, TrackingSession


@admin.register(TrackingSession)
class TrackingSessionAdmin(admin.ModelAdmin):
    list_display = ("partner", "state", "mode", "started_at", "stopped_at")
    list_filter = ("state", "mode")
    search_fields = ("partner__phone", "partner__full_name")


@admin.register(PartnerLocation)
class PartnerLocationAdmin(admin.ModelAdmin):
    list_display = ("partner", "lat", "lng", "heading", "sampled_at", "received_at")
    search_fields = ("partner__phone",)
    readonly_fields = ("partner", "lat", "lng", "heading", "accuracy", "sampled_at", "received_at")

    def has_add_permission(self, request):
        return False
