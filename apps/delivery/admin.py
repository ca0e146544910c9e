from django.contrib import admin
from .models import Delivery, DeliveryStatusEvent, TransitionRequest


class DeliveryStatusEventInline(admin.TabularInline):
    model = DeliveryStatusEvent
    extra = 0
    can_delete = False
    readonly_fields = ("sequence", "status", "note", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "order",
        "partner",
        "status",
        "created_at",
        "picked_up_at",
        "delivered_at",
    )
    list_filter = ("status", "created_at")
    search_fields = ("id", "order__order_number", "partner__phone")
    inlines = [DeliveryStatusEventInline]

    # Status only moves through DeliveryService
    readonly_fields = (
        "id",
        "order",
        "partner",
        "status",
        "assigned_at",
        "accepted_at",
        "picked_up_at",
        "departed_at",
        "delivered_at",
        "cancelled_at",
        "cancellation_reason",
        "created_at",
    )

    def has_add_permission(self, request):
        return False


@admin.register(TransitionRequest)
class TransitionRequestAdmin(admin.ModelAdmin):
    list_display = ("delivery", "idempotency_key", "target_status", "resulting_status", "created_at")
    search_fields = ("idempotency_key", "delivery__id")
    readonly_fields = ("delivery", "idempotency_key", "target_status", "resulting_status", "created_at")

    def has_add_permission(self, request):
        return False
