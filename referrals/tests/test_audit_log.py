"""
The audit log is append-only.
"""
from decimal import Decimal

import pytest

from referrals.models import ReferralAuditLog
from referrals.services.ledger_service import record_audit

pytestmark = pytest.mark.django_db


class TestAppendOnly:

    def test_entries_cannot_be_modified(self, assignment):
        entry = record_audit(ReferralAuditLog.PAYOUT_REQUESTED, assignment=assignment)

        entry.actor = 'someone-else@example.com'
        with pytest.raises(ValueError):
            entry.save()

        entry.refresh_from_db()
        assert entry.actor == ReferralAuditLog.SYSTEM

    def test_entries_cannot_be_deleted(self, assignment):
        entry = record_audit(ReferralAuditLog.COMMISSION_REVERSED, assignment=assignment)

        with pytest.raises(ValueError):
            entry.delete()
        assert ReferralAuditLog.objects.filter(pk=entry.pk).exists()

    def test_decimal_metadata_is_stored_as_text(self, assignment):
        entry = record_audit(ReferralAuditLog.PAYOUT_COMPLETED, assignment=assignment, amount=Decimal('12.50'))
        entry.refresh_from_db()
        assert entry.metadata == {'amount': '12.50'}


class TestAdmin:

    def test_admin_is_read_only(self, rf, staff_user):
        from django.contrib import admin

        model_admin = admin.site._registry[ReferralAuditLog]
        request = rf.get('/')
        request.user = staff_user

        assert not model_admin.has_add_permission(request)
        assert not model_admin.has_change_permission(request)
        assert not model_admin.has_delete_permission(request)
