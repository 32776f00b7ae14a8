from django.contrib import admin, messages

from .models import (
    EarlyReversal,
    Referral,
    ReferralAssignment,
    ReferralAuditLog,
    ReferralCommission,
    ReferralPayout,
    ReferralProfile,
)
from .services.payout_service import PayoutError, PayoutService


@admin.register(ReferralProfile)
class ReferralProfileAdmin(admin.ModelAdmin):
    """Admin for referral programme templates."""

    list_display = ('name', 'type', 'is_active', 'assignment_count', 'updated_at')
    list_filter = ('type', 'is_active')
    search_fields = ('name',)
    readonly_fields = ('created_at', 'updated_at')

    def assignment_count(self, obj):
        return obj.assignments.count()
    assignment_count.short_description = 'Assignments'


@admin.register(ReferralAssignment)
class ReferralAssignmentAdmin(admin.ModelAdmin):
    """Admin for referrer accounts and their counters."""

    list_display = (
        'referral_code', 'user', 'profile', 'status', 'payout_method',
        'total_referrals', 'total_converted', 'total_earned', 'total_paid'
    )
    list_filter = ('status', 'profile', 'payout_method')
    search_fields = ('referral_code', 'custom_slug', 'user__email')
    raw_id_fields = ('user',)
    readonly_fields = ('total_referrals', 'total_converted', 'total_earned', 'total_paid', 'created_at', 'updated_at')

    fieldsets = (
        (None, {
            'fields': ('user', 'profile', 'status', 'referral_code', 'custom_slug')
        }),
        ('Configuration', {
            'fields': ('config_override',),
            'description': 'Sections set here replace the matching profile sections key by key.'
        }),
        ('Payout', {
            'fields': ('payout_method', 'stripe_connect_id', 'payout_details')
        }),
        ('Counters', {
            'fields': ('total_referrals', 'total_converted', 'total_earned', 'total_paid')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(Referral)
class ReferralAdmin(admin.ModelAdmin):
    list_display = ('referred_email', 'assignment', 'status', 'registered_at', 'converted_at')
    list_filter = ('status',)
    search_fields = ('referred_email', 'assignment__referral_code')
    raw_id_fields = ('referred_user', 'assignment')


@admin.register(ReferralCommission)
class ReferralCommissionAdmin(admin.ModelAdmin):
    """Admin for the commission ledger. Amounts are written by the billing webhooks only."""

    list_display = (
        'assignment', 'total_amount', 'adjusted_amount', 'currency', 'status',
        'payout', 'qualifies_at', 'created_at'
    )
    list_filter = ('status', 'currency')
    search_fields = ('stripe_payment_id', 'stripe_invoice_id', 'assignment__referral_code')
    readonly_fields = (
        'assignment', 'referral', 'payout', 'stripe_payment_id', 'stripe_invoice_id',
        'base_amount', 'commission_rate', 'fixed_amount', 'total_amount', 'adjusted_amount',
        'adjustment_reason', 'currency', 'status', 'qualifies_at', 'qualified_at',
        'paid_at', 'reversed_at', 'created_at', 'updated_at'
    )

    def has_add_permission(self, request):
        return False


@admin.register(EarlyReversal)
class EarlyReversalAdmin(admin.ModelAdmin):
    list_display = ('stripe_payment_id', 'kind', 'refunded_cents', 'is_full_refund', 'applied_at', 'created_at')
    list_filter = ('kind',)
    search_fields = ('stripe_payment_id',)
    readonly_fields = ('stripe_payment_id', 'kind', 'refunded_cents', 'is_full_refund', 'applied_at', 'created_at', 'updated_at')

    def has_add_permission(self, request):
        return False


@admin.register(ReferralPayout)
class ReferralPayoutAdmin(admin.ModelAdmin):
    """Admin for payouts; settle them with the actions."""

    list_display = ('assignment', 'amount', 'currency', 'method', 'status', 'stripe_transfer_id', 'created_at')
    list_filter = ('status', 'method')
    search_fields = ('assignment__referral_code', 'assignment__user__email', 'stripe_transfer_id', 'reference')
    readonly_fields = (
        'assignment', 'amount', 'currency', 'method', 'status', 'stripe_transfer_id',
        'failure_reason', 'processed_by', 'created_at', 'updated_at',
        'processed_at', 'completed_at', 'failed_at'
    )

    actions = ['mark_completed', 'mark_failed']

    def has_add_permission(self, request):
        return False

    def _settle(self, request, queryset, status):
        service = PayoutService()
        settled = 0
        for payout in queryset:
            try:
                service.settle_payout(payout.pk, status, actor_user=request.user, reference=payout.reference)
                settled += 1
            except PayoutError as e:
                self.message_user(request, f'Payout {payout.pk}: {e.message}', level=messages.ERROR)
        self.message_user(request, f'{settled} payouts marked as {status.lower()}.')

    def mark_completed(self, request, queryset):
        self._settle(request, queryset, ReferralPayout.COMPLETED)
    mark_completed.short_description = 'Mark selected as completed'

    def mark_failed(self, request, queryset):
        self._settle(request, queryset, ReferralPayout.FAILED)
    mark_failed.short_description = 'Mark selected as failed (releases commissions)'


@admin.register(ReferralAuditLog)
class ReferralAuditLogAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""

    list_display = ('created_at', 'action', 'actor', 'assignment', 'payout', 'commission')
    list_filter = ('action',)
    search_fields = ('actor', 'assignment__referral_code')
    readonly_fields = ('action', 'actor', 'assignment', 'payout', 'commission', 'metadata', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
