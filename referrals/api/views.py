import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from accounts.services.stripe_gateway import get_gateway
from referrals.models import ReferralPayout
from referrals.services.payout_service import (
    PayoutError,
    PayoutService,
    get_affiliate_assignment,
    payout_summary,
)
from .serializers import (
    AdminPayoutSerializer,
    PayoutSerializer,
    PayoutSettleSerializer,
    PayoutSummarySerializer,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    'no_program': status.HTTP_404_NOT_FOUND,
    'not_found': status.HTTP_404_NOT_FOUND,
    'claim_conflict': status.HTTP_409_CONFLICT,
    'already_settled': status.HTTP_409_CONFLICT,
}


def _error_response(error):
    body = {'error': error.message, 'code': error.code}
    if error.balance is not None:
        body['balance'] = str(error.balance)
    if error.threshold is not None:
        body['threshold'] = str(error.threshold)
    return Response(body, status=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def payouts(request):
    """GET: balances and recent payouts. POST: request a payout of the available balance."""
    if request.method == 'GET':
        assignment = get_affiliate_assignment(request.user.pk)
        if assignment is None:
            return Response(
                {'error': 'You are not enrolled in the affiliate program', 'code': 'no_program'},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(PayoutSummarySerializer(payout_summary(assignment)).data)

    service = PayoutService(get_gateway())
    try:
        outcome = service.request_payout(request.user.pk)
    except PayoutError as e:
        logger.info(f"Payout request rejected for user {request.user.pk}: {e.code}")
        return _error_response(e)

    if outcome.failed:
        return Response({
            'error': 'Transfer failed; your balance is available again',
            'code': 'transfer_failed',
            'payout': PayoutSerializer(outcome.payout).data,
        }, status=status.HTTP_502_BAD_GATEWAY)

    return Response({
        'message': 'Payout requested',
        'payout': PayoutSerializer(outcome.payout).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAdminUser])
def admin_payouts(request):
    """All payouts, optionally filtered by ?status=."""
    queryset = ReferralPayout.objects.select_related('assignment__user').order_by('-created_at')
    status_filter = request.query_params.get('status')
    if status_filter:
        queryset = queryset.filter(status=status_filter.upper())
    return Response(AdminPayoutSerializer(queryset[:100], many=True).data)


@api_view(['PATCH'])
@permission_classes([IsAdminUser])
def admin_payout_settle(request, payout_id):
    """Mark an open payout COMPLETED or FAILED."""
    serializer = PayoutSettleSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    service = PayoutService(get_gateway())
    try:
        payout = service.settle_payout(
            payout_id,
            data['status'],
            actor_user=request.user,
            reference=data.get('reference', ''),
            reason=data.get('reason', ''),
        )
    except PayoutError as e:
        return _error_response(e)

    return Response(AdminPayoutSerializer(payout).data)
