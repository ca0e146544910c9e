from rest_framework import serializers
from .models import CODCollection, CODSettlement


class CODCollectionSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)

    class Meta:
        model = CODCollection
        fields = ['id', 'order', 'order_number', 'delivery', 'partner', 'amount', 'collected_at']
        read_only_fields = fields


class CODSettlementSerializer(serializers.ModelSerializer):
    class Meta:
        model = CODSettlement
        fields = ['id', 'partner', 'amount', 'submitted_at', 'submitted_by', 'reference', 'collections']
        read_only_fields = fields


class RecordCollectionSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    delivery_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)


class RecordSettlementSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    order_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    reference = serializers.CharField(required=False, allow_blank=True, max_length=100)


class PlatformSettlementSerializer(RecordSettlementSerializer):
    partner_id = serializers.UUIDField()


class PendingCollectionSerializer(serializers.Serializer):
    collection_id = serializers.UUIDField()
    order_id = serializers.UUIDField()
    order_number = serializers.CharField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    outstanding = serializers.DecimalField(max_digits=10, decimal_places=2)
    collected_at = serializers.DateTimeField()


class LedgerSummarySerializer(serializers.Serializer):
    total_collected = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_submitted = serializers.DecimalField(max_digits=12, decimal_places=2)
    collected_not_submitted = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending_collections = PendingCollectionSerializer(many=True)
