from rest_framework import serializers
from .models import PartnerLocation, TrackingSession
from .services import reporting_interval


class TrackingSessionSerializer(serializers.ModelSerializer):
    reporting_interval = serializers.SerializerMethodField()

    class Meta:
        model = TrackingSession
        fields = ['partner', 'state', 'mode', 'started_at', 'stopped_at', 'reporting_interval']
        read_only_fields = fields

    def get_reporting_interval(self, obj):
        return reporting_interval(obj.mode)


class PartnerLocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = PartnerLocation
        fields = ['partner', 'lat', 'lng', 'heading', 'accuracy', 'sampled_at', 'received_at']
        read_only_fields = fields


class StartTrackingSerializer(serializers.Serializer):
    permission = serializers.CharField()


class LocationSampleSerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)
    heading = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=360)
    accuracy = serializers.FloatField(required=False, allow_null=True, min_value=0)
    sampled_at = serializers.DateTimeField(required=False)


class EtaQuerySerializer(serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90)
    lng = serializers.FloatField(min_value=-180, max_value=180)


class RouteEstimateSerializer(serializers.Serializer):
    distance_meters = serializers.IntegerField()
    duration_seconds = serializers.IntegerField()
    source = serializers.CharField()
    polyline = serializers.CharField(allow_blank=True)
