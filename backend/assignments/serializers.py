from rest_framework import serializers

from dispatch.analytics import TIME_RANGE_PRESETS, TimeRange
from dispatch.models import OfferResponse


def _lat_lng(location):
    if location is None:
        return None
    return {"lat": location[0], "lng": location[1]}


# --- Request bodies ---

class OrderIngestSerializer(serializers.Serializer):
    """
    A ready order handed over by the order lifecycle.
    """
    order_id = serializers.CharField(max_length=64)
    restaurant_lat = serializers.FloatField(min_value=-90, max_value=90)
    restaurant_lng = serializers.FloatField(min_value=-180, max_value=180)
    delivery_lat = serializers.FloatField(min_value=-90, max_value=90, required=False, allow_null=True)
    delivery_lng = serializers.FloatField(min_value=-180, max_value=180, required=False, allow_null=True)
    zone_id = serializers.CharField(max_length=64, required=False, allow_null=True)


class RiderProfileSerializer(serializers.Serializer):
    rider_id = serializers.CharField(max_length=64)
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    is_online = serializers.BooleanField(default=True)
    max_concurrent_orders = serializers.IntegerField(min_value=1, default=2)
    active_order_count = serializers.IntegerField(min_value=0, default=0)
    acceptance_rate = serializers.FloatField(min_value=0, max_value=1, required=False, allow_null=True)
    completion_rate = serializers.FloatField(min_value=0, max_value=1, required=False, allow_null=True)
    average_rating = serializers.FloatField(min_value=0, max_value=5, required=False, allow_null=True)
    zones = serializers.ListField(child=serializers.CharField(max_length=64), required=False, default=list)

    def validate(self, attrs):
        if attrs["active_order_count"] > attrs["max_concurrent_orders"]:
            raise serializers.ValidationError("active_order_count cannot exceed max_concurrent_orders")
        return attrs


class ManualAssignSerializer(serializers.Serializer):
    rider_id = serializers.CharField(max_length=64)
    operator_id = serializers.CharField(max_length=64)


class OfferResponseSerializer(serializers.Serializer):
    rider_id = serializers.CharField(max_length=64)
    response = serializers.ChoiceField(choices=[r.value for r in OfferResponse])


class RiderLocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class RiderStatusSerializer(serializers.Serializer):
    is_online = serializers.BooleanField()


class AnalyticsQuerySerializer(serializers.Serializer):
    """
    Either a preset (?time_range=day|week|month) or an explicit ?start=&end= pair.
    Defaults to today.
    """
    time_range = serializers.ChoiceField(choices=TIME_RANGE_PRESETS, required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("start"), attrs.get("end")
        if attrs.get("time_range") and (start or end):
            raise serializers.ValidationError("Use either time_range or start/end, not both")
        if (start is None) != (end is None):
            raise serializers.ValidationError("start and end must be given together")

        try:
            if start is not None:
                attrs["window"] = TimeRange(start=start, end=end)
            else:
                attrs["window"] = TimeRange.preset(attrs.get("time_range", "day"))
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))
        return attrs


# --- Responses ---

class CycleStatusSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    cycle_id = serializers.CharField()
    state = serializers.CharField(source="state.value")
    started_at = serializers.DateTimeField()
    current_rider_id = serializers.CharField(allow_null=True)
    current_attempt_id = serializers.CharField(allow_null=True)
    assigned_rider_id = serializers.CharField(allow_null=True)
    offered_rider_ids = serializers.ListField(child=serializers.CharField())
    remaining_candidates = serializers.IntegerField()
    finished_at = serializers.DateTimeField(allow_null=True)
    end_reason = serializers.CharField(allow_null=True)
    fallback_required = serializers.BooleanField()


class OrderSerializer(serializers.Serializer):
    id = serializers.CharField()
    status = serializers.CharField(source="status.value")
    rider_id = serializers.CharField(allow_null=True)
    zone_id = serializers.CharField(allow_null=True)
    restaurant_location = serializers.SerializerMethodField()
    delivery_location = serializers.SerializerMethodField()
    rider_assigned_at = serializers.DateTimeField(allow_null=True)

    def get_restaurant_location(self, obj):
        return _lat_lng(obj.restaurant_location)

    def get_delivery_location(self, obj):
        return _lat_lng(obj.delivery_location)


class AttemptSerializer(serializers.Serializer):
    id = serializers.CharField()
    order_id = serializers.CharField()
    rider_id = serializers.CharField()
    cycle_id = serializers.CharField()
    outcome = serializers.SerializerMethodField()
    offered_at = serializers.DateTimeField()
    responded_at = serializers.DateTimeField(allow_null=True)

    def get_outcome(self, obj):
        return obj.outcome.value if obj.outcome else None


class RiderSerializer(serializers.Serializer):
    id = serializers.CharField()
    is_online = serializers.BooleanField()
    location = serializers.SerializerMethodField()
    location_updated_at = serializers.DateTimeField(allow_null=True)
    active_order_count = serializers.IntegerField()
    max_concurrent_orders = serializers.IntegerField()
    acceptance_rate = serializers.FloatField(allow_null=True)
    completion_rate = serializers.FloatField(allow_null=True)
    average_rating = serializers.FloatField(allow_null=True)
    zones = serializers.SerializerMethodField()

    def get_location(self, obj):
        return _lat_lng(obj.location)

    def get_zones(self, obj):
        return sorted(obj.zones)


class CandidateScoreSerializer(serializers.Serializer):
    rider_id = serializers.CharField()
    score = serializers.FloatField()
    distance_km = serializers.FloatField()
    factors = serializers.SerializerMethodField()

    def get_factors(self, obj):
        return obj.factors()


class ManualQueueItemSerializer(serializers.Serializer):
    order_id = serializers.CharField()
    cycle_id = serializers.CharField()
    queued_at = serializers.DateTimeField()
    reason = serializers.CharField(allow_null=True)
    offered_rider_ids = serializers.ListField(child=serializers.CharField())
    candidates = CandidateScoreSerializer(many=True)
