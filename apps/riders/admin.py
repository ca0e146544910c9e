from django.contrib import admin
from .models import DeliveryPartner


@admin.register(DeliveryPartner)
class DeliveryPartnerAdmin(admin.ModelAdmin):
    list_display = ('full_name', 'phone', 'is_approved', 'created_at')
    list_filter = ('is_approved',)
    search_fields = ('full_name', 'phone')
