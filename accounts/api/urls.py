from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from . import views

app_name = 'api'

urlpatterns = [
    # JWT auth
    path('auth/token/', TokenObtainPairView.as_view(), name='token_obtain'),
    path('auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    # Entitlements
    path('features/me/', views.features_me, name='features_me'),
    path('plans/', views.plans_list, name='plans_list'),

    # Billing
    path('billing/subscription/', views.change_subscription, name='change_subscription'),
    path('billing/subscription/preview/', views.preview_subscription, name='preview_subscription'),
]
