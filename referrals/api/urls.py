from django.urls import path

from . import views

app_name = 'referrals_api'

urlpatterns = [
    path('payouts/', views.payouts, name='payouts'),
    path('admin/payouts/', views.admin_payouts, name='admin_payouts'),
    path('admin/payouts/<int:payout_id>/', views.admin_payout_settle, name='admin_payout_settle'),
]
