from rest_framework import serializers
from .models import DeliveryPartner


class DeliveryPartnerSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryPartner
        fields = ['id', 'full_name', 'phone', 'is_approved', 'created_at']
        read_only_fields = fields
