from django.contrib import admin
from .models import CODCollection, CODSettlement


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """
    Ledger rows are written by CODLedger only.
    """

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CODCollection)
class CODCollectionAdmin(ReadOnlyLedgerAdmin):
    list_display = ("order", "partner", "amount", "collected_at")
    list_filter = ("collected_at",)
    search_fields = ("order__order_number", "partner__phone")


@admin.register(CODSettlement)
class CODSettlementAdmin(ReadOnlyLedgerAdmin):
    list_display = ("partner", "amount", "submitted_by", "reference", "submitted_at")
    list_filter = ("submitted_by",)
    search_fields = ("partner__phone", "reference")
