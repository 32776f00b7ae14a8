from rest_framework import serializers

from accounts.models import Plan


class PlanSerializer(serializers.ModelSerializer):
    """Public view of a catalog plan."""

    class Meta:
        model = Plan
        fields = [
            'id', 'name', 'display_name', 'description', 'price', 'currency', 'interval',
            'sort_order', 'config', 'stripe_price_id_monthly', 'stripe_price_id_yearly',
        ]


class SubscriptionChangeSerializer(serializers.Serializer):
    """Input for changing or previewing a plan change."""
    plan_id = serializers.IntegerField()
    price_id = serializers.CharField(required=False, allow_blank=True, max_length=255)
    referral_code = serializers.CharField(required=False, allow_blank=True, max_length=50)
