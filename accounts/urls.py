from django.urls import path
from . import views

app_name = 'accounts'

urlpatterns = [
    # Stripe
    path('stripe/webhook/', views.stripe_webhook, name='stripe_webhook'),
]
