import logging

from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .services.stripe_gateway import get_gateway
from .services.webhook_service import WebhookError, WebhookService

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """Handle Stripe webhook events for billing and referrals."""
    payload = request.body
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')

    try:
        WebhookService(get_gateway()).process(payload, sig_header)
    except WebhookError as e:
        logger.warning(f"Rejected Stripe webhook: {str(e)}")
        return HttpResponse(f'Webhook Error: {str(e)}', status=400)

    return HttpResponse(status=200)
