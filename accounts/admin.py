from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth import get_user_model
from .models import Plan

User = get_user_model()


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin configuration for custom User model."""

    list_display = ('email', 'first_name', 'last_name', 'plan', 'scheduled_plan', 'stripe_current_period_end', 'is_staff', 'is_active', 'created_at')
    list_filter = ('plan', 'is_staff', 'is_superuser', 'is_active')
    search_fields = ('email', 'first_name', 'last_name', 'stripe_customer_id', 'stripe_subscription_id')
    ordering = ('-created_at',)

    fieldsets = (
        (None, {'fields': ('email', 'password')}),
        ('Personal Info', {'fields': ('first_name', 'last_name')}),
        ('Plan & Features', {
            'fields': ('plan', 'scheduled_plan', 'feature_overrides'),
            'description': 'Overrides take precedence over the plan. Use null to unset a key.'
        }),
        ('Stripe', {
            'fields': ('stripe_customer_id', 'stripe_subscription_id', 'stripe_price_id', 'stripe_current_period_end'),
            'classes': ('collapse',)
        }),
        ('Permissions', {'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions')}),
        ('Important dates', {'fields': ('last_login',)}),
    )
    readonly_fields = ('stripe_customer_id', 'stripe_subscription_id', 'stripe_price_id', 'stripe_current_period_end')

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'password1', 'password2'),
        }),
    )


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    """Admin for the plan catalog."""

    list_display = ('name', 'display_name', 'price', 'currency', 'interval', 'sort_order', 'is_active', 'subscriber_count')
    list_filter = ('is_active', 'interval')
    search_fields = ('name', 'display_name', 'stripe_price_id_monthly', 'stripe_price_id_yearly')
    ordering = ('sort_order',)
    readonly_fields = ('created_at', 'updated_at')

    fieldsets = (
        (None, {
            'fields': ('name', 'display_name', 'description', 'sort_order', 'is_active')
        }),
        ('Pricing', {
            'fields': ('price', 'currency', 'interval', 'stripe_price_id_monthly', 'stripe_price_id_yearly')
        }),
        ('Features & Limits', {
            'fields': ('config',),
            'description': '{"features": {"key": true}, "limits": {"key": 10}}; -1 means unlimited.'
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    def subscriber_count(self, obj):
        return obj.accounts.count()
    subscriber_count.short_description = 'Accounts'
