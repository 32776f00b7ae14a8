from rest_framework import serializers

from referrals.models import ReferralPayout


class PayoutSerializer(serializers.ModelSerializer):
    commission_count = serializers.SerializerMethodField()

    class Meta:
        model = ReferralPayout
        fields = [
            'id', 'amount', 'currency', 'method', 'status', 'stripe_transfer_id',
            'reference', 'failure_reason', 'commission_count',
            'created_at', 'processed_at', 'completed_at', 'failed_at',
        ]

    def get_commission_count(self, obj):
        return obj.commissions.count()


class AdminPayoutSerializer(PayoutSerializer):
    user_email = serializers.EmailField(source='assignment.user.email', read_only=True)
    referral_code = serializers.CharField(source='assignment.referral_code', read_only=True)

    class Meta(PayoutSerializer.Meta):
        fields = PayoutSerializer.Meta.fields + ['user_email', 'referral_code', 'notes']


class PayoutSettleSerializer(serializers.Serializer):
    """Input for the operator settling a payout."""
    status = serializers.ChoiceField(choices=ReferralPayout.TERMINAL_STATUSES)
    reference = serializers.CharField(required=False, allow_blank=True, max_length=255)
    reason = serializers.CharField(required=False, allow_blank=True)


class PayoutSummarySerializer(serializers.Serializer):
    available_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_earned = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_paid = serializers.DecimalField(max_digits=12, decimal_places=2)
    payout_method = serializers.CharField()
    min_threshold = serializers.DecimalField(max_digits=12, decimal_places=2)
    can_request_payout = serializers.BooleanField()
    recent_payouts = PayoutSerializer(many=True)
