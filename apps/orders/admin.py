from django.contrib import admin
from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        'order_number',
        'payment_method',
        'payment_status',
        'total_amount',
        'paid_at',
        'created_at',
    )
    list_filter = ('payment_method', 'payment_status')
    search_fields = ('order_number', 'id')
    readonly_fields = ('paid_at', 'payment_confirmation_requested_at', 'created_at', 'updated_at')
