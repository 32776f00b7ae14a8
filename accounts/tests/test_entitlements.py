"""
Feature access resolution: override -> plan -> global default, with admin bypass.
"""
import pytest

from accounts.capabilities import UNLIMITED, Capability
from accounts.models import User
from accounts.services.entitlement_service import (
    FeatureAccess,
    has_feature,
    resolve,
    resolve_all,
    within_limit,
)

pytestmark = pytest.mark.django_db


class TestPrecedence:

    def test_plan_value_used_when_no_override(self, pro_user):
        assert resolve(pro_user, 'hideBranding') == FeatureAccess(True, None)
        assert resolve(pro_user, 'maxProjects') == FeatureAccess(True, 50)

    def test_default_used_when_plan_silent(self, pro_user):
        # Pro plan does not mention whiteLabel or bioMaxLength
        assert resolve(pro_user, 'whiteLabel') == FeatureAccess(False, None)
        assert resolve(pro_user, 'bioMaxLength') == FeatureAccess(True, 150)

    def test_default_used_without_plan(self, db):
        account = User.objects.create_user(email='noplan@example.com', password='s3cret-pass')
        assert resolve(account, 'publicProfile').allowed is True
        assert resolve(account, 'maxScenaProjects') == FeatureAccess(False, 0)

    def test_boolean_override_beats_plan(self, pro_user):
        pro_user.feature_overrides = {'hideBranding': False}
        pro_user.save()
        assert resolve(pro_user, 'hideBranding') == FeatureAccess(False, None)

    def test_numeric_override_beats_plan(self, user):
        user.feature_overrides = {'maxProjects': 10}
        user.save()
        assert resolve(user, 'maxProjects') == FeatureAccess(True, 10)

    def test_null_override_falls_through(self, user):
        user.feature_overrides = {'maxProjects': None}
        user.save()
        assert resolve(user, 'maxProjects') == FeatureAccess(True, 3)

    def test_numeric_override_on_boolean_is_ignored(self, pro_user):
        pro_user.feature_overrides = {'hideBranding': 0}
        pro_user.save()
        assert resolve(pro_user, 'hideBranding') == FeatureAccess(True, None)

    def test_false_override_on_numeric_denies(self, pro_user):
        pro_user.feature_overrides = {'maxProjects': False}
        pro_user.save()
        assert resolve(pro_user, 'maxProjects').allowed is False

    def test_unlimited_plan_limit(self, studio_plan):
        account = User.objects.create_user(email='studio@example.com', password='s3cret-pass', plan=studio_plan)
        assert resolve(account, 'maxProjects') == FeatureAccess(True, UNLIMITED)


class TestAdminBypass:

    def test_staff_get_everything(self, staff_user):
        assert resolve(staff_user, 'whiteLabel') == FeatureAccess(True, None)
        assert resolve(staff_user, 'maxProjects') == FeatureAccess(True, UNLIMITED)

    def test_staff_bypass_ignores_overrides(self, staff_user):
        staff_user.feature_overrides = {'whiteLabel': False}
        staff_user.save()
        assert resolve(staff_user, 'whiteLabel').allowed is True

    def test_resolve_all_for_staff(self, staff_user):
        features = resolve_all(staff_user)
        assert features['customDomain'] is True
        assert features['maxImagesPerProject'] == UNLIMITED


class TestLookups:

    def test_unknown_capability_raises(self, user):
        with pytest.raises(ValueError):
            resolve(user, 'teleportation')

    def test_unknown_account_denied(self, db):
        assert resolve(999999, 'publicProfile') == FeatureAccess(False, None)

    def test_resolve_by_primary_key(self, pro_user):
        assert resolve(pro_user.pk, Capability.HIDE_BRANDING).allowed is True

    def test_resolve_all_covers_every_capability(self, user):
        features = resolve_all(user)
        assert set(features) == {c.value for c in Capability}
        assert features['publicProfile'] is True
        assert features['maxProjects'] == 3
        assert features['hideBranding'] is False

    def test_resolve_all_applies_overrides(self, user):
        user.feature_overrides = {'hideBranding': True, 'maxProjects': 7}
        user.save()
        features = resolve_all(user)
        assert features['hideBranding'] is True
        assert features['maxProjects'] == 7

    def test_has_feature(self, pro_user, user):
        assert has_feature(pro_user, 'passwordProtection')
        assert not has_feature(user, 'passwordProtection')

    def test_within_limit(self, user, studio_plan):
        assert within_limit(user, 'maxProjects', 2)
        assert not within_limit(user, 'maxProjects', 3)

        user.plan = studio_plan
        user.save()
        assert within_limit(user, 'maxProjects', 10000)
