import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from accounts.models import Plan
from accounts.services.entitlement_service import resolve_all
from accounts.services.stripe_gateway import get_gateway
from accounts.services.subscription_service import PlanChangeError, SubscriptionService
from .serializers import PlanSerializer, SubscriptionChangeSerializer

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    'plan_not_found': status.HTTP_404_NOT_FOUND,
    'account_not_found': status.HTTP_404_NOT_FOUND,
    'invalid_price': status.HTTP_400_BAD_REQUEST,
    'processor_error': status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_response(error):
    return Response({
        'error': error.message,
        'code': error.code,
        'retryable': error.retryable,
    }, status=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def features_me(request):
    """Effective feature map for the current user."""
    return Response({
        'features': resolve_all(request.user),
        'role': request.user.get_role(),
        'plan': request.user.plan.name if request.user.plan_id else None,
    })


@api_view(['GET'])
@permission_classes([AllowAny])
def plans_list(request):
    """Active plans, cheapest first."""
    plans = Plan.objects.filter(is_active=True).order_by('sort_order')
    return Response(PlanSerializer(plans, many=True).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def change_subscription(request):
    """Start a checkout, upgrade immediately, or schedule a downgrade."""
    serializer = SubscriptionChangeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    service = SubscriptionService(get_gateway())
    try:
        outcome = service.change_plan(
            request.user.pk,
            data['plan_id'],
            price_id=data.get('price_id') or None,
            referral_code=data.get('referral_code') or None,
        )
    except PlanChangeError as e:
        logger.warning(f"Plan change rejected for user {request.user.pk}: {e.code}")
        return _error_response(e)

    body = {
        'type': outcome.type,
        'message': outcome.message,
        'plan': PlanSerializer(outcome.plan).data if outcome.plan else None,
    }
    if outcome.url:
        body['url'] = outcome.url
    if outcome.effective_date:
        body['effective_date'] = outcome.effective_date.isoformat()
    return Response(body)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def preview_subscription(request):
    """Show what a plan change would cost, without changing anything."""
    serializer = SubscriptionChangeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    service = SubscriptionService(get_gateway())
    try:
        preview = service.preview_change(request.user.pk, data['plan_id'], price_id=data.get('price_id') or None)
    except PlanChangeError as e:
        return _error_response(e)

    if preview.get('effective_date'):
        preview['effective_date'] = preview['effective_date'].isoformat()
    if 'proration_amount' in preview:
        preview['proration_amount'] = str(preview['proration_amount'])
    return Response(preview)
