from rest_framework import serializers
from apps.cod.serializers import LedgerSummarySerializer


class EarningsSummarySerializer(serializers.Serializer):
    partner_id = serializers.CharField()
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    total_earnings = serializers.DecimalField(max_digits=12, decimal_places=2)
    online_payment_earnings = serializers.DecimalField(max_digits=12, decimal_places=2)
    completed = serializers.IntegerField()
    pending = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    total_deliveries = serializers.IntegerField()
    average_rating = serializers.FloatField()
    cod_outstanding = serializers.DecimalField(max_digits=12, decimal_places=2)
    cod_submitted = serializers.DecimalField(max_digits=12, decimal_places=2)
    cod = LedgerSummarySerializer()
