from rest_framework import serializers
from .models import Delivery, DeliveryStatusEvent


class DeliveryStatusEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryStatusEvent
        fields = ['id', 'sequence', 'status', 'note', 'created_at']
        read_only_fields = fields


class DeliverySerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)
    payment_method = serializers.CharField(source='order.payment_method', read_only=True)
    amount_due = serializers.DecimalField(source='order.total_amount', max_digits=10, decimal_places=2, read_only=True)
    partner_name = serializers.CharField(source='partner.full_name', read_only=True, default=None)

    class Meta:
        model = Delivery
        fields = [
            'id', 'order', 'order_number', 'payment_method', 'amount_due',
            'partner', 'partner_name', 'status',
            'pickup_address', 'delivery_address', 'delivery_fee', 'estimated_delivery_time',
            'assigned_at', 'accepted_at', 'picked_up_at', 'departed_at',
            'delivered_at', 'cancelled_at', 'cancellation_reason',
            'rating', 'review', 'created_at',
        ]
        read_only_fields = fields


class DeliveryCreateSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    pickup_address = serializers.CharField()
    delivery_address = serializers.CharField()
    delivery_fee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    partner_id = serializers.UUIDField(required=False, allow_null=True)
    estimated_delivery_time = serializers.DateTimeField(required=False, allow_null=True)


class AssignPartnerSerializer(serializers.Serializer):
    partner_id = serializers.UUIDField()


class TransitionSerializer(serializers.Serializer):
    idempotency_key = serializers.CharField(max_length=100, required=False, allow_blank=True)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class RatingSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    review = serializers.CharField(required=False, allow_blank=True, max_length=500)
