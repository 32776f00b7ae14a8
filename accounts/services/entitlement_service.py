"""
Feature access resolution.

Effective access for an (account, capability) pair is decided in strict
precedence order: per-account override, then the account's plan, then the
capability's global default. Staff and superusers bypass all of it.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..capabilities import FEATURE_POOL, UNLIMITED, Capability, get_definition
from ..models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureAccess:
    allowed: bool
    limit: Optional[int] = None

    def as_value(self, capability):
        """Value exposed to the UI: the limit for numeric capabilities, else the flag."""
        if get_definition(capability).is_numeric:
            if self.limit is not None:
                return self.limit
            return UNLIMITED if self.allowed else 0
        return self.allowed


DENIED = FeatureAccess(False, None)


def _from_value(capability, value):
    if get_definition(capability).is_numeric:
        return FeatureAccess(value != 0, value)
    return FeatureAccess(bool(value), None)


def _admin_access(capability):
    if get_definition(capability).is_numeric:
        return FeatureAccess(True, UNLIMITED)
    return FeatureAccess(True, None)


def _load_account(account):
    if isinstance(account, User):
        return account
    return User.objects.select_related('plan').filter(pk=account).first()


def _resolve_for(account, capability, plan_config):
    overrides = account.feature_overrides or {}
    override = overrides.get(capability.value)

    if isinstance(override, bool):
        return FeatureAccess(override, None)
    if isinstance(override, int):
        if get_definition(capability).is_numeric:
            return FeatureAccess(True, override)
        logger.warning(f"Ignoring numeric override on boolean capability {capability.value} for user {account.pk}")
    elif override is not None:
        logger.warning(f"Ignoring malformed override {capability.value}={override!r} for user {account.pk}")

    definition = get_definition(capability)
    if plan_config is None:
        return _from_value(capability, definition.default)

    hit = plan_config.lookup(capability)
    if hit is not None:
        return _from_value(capability, hit[1])

    return _from_value(capability, definition.default)


def resolve(account, capability_key) -> FeatureAccess:
    """
    Resolve one capability for an account.

    Args:
        account: User instance or primary key
        capability_key: Capability or its string key; unknown keys raise ValueError

    Returns:
        FeatureAccess(allowed, limit). Unknown accounts are denied.
    """
    capability = Capability(capability_key)
    account = _load_account(account)
    if account is None:
        return DENIED
    if account.has_unlimited_access():
        return _admin_access(capability)

    plan_config = account.plan.get_config() if account.plan_id else None
    return _resolve_for(account, capability, plan_config)


def resolve_all(account) -> dict:
    """Return {capability key: bool|int} for every known capability."""
    account = _load_account(account)
    if account is None:
        return {capability.value: DENIED.as_value(capability) for capability in FEATURE_POOL}

    if account.has_unlimited_access():
        return {capability.value: _admin_access(capability).as_value(capability) for capability in FEATURE_POOL}

    plan_config = account.plan.get_config() if account.plan_id else None
    return {
        capability.value: _resolve_for(account, capability, plan_config).as_value(capability)
        for capability in FEATURE_POOL
    }


def has_feature(account, capability_key) -> bool:
    return resolve(account, capability_key).allowed


def within_limit(account, capability_key, current_count) -> bool:
    """True when ``current_count`` more items may still be created under the account's limit."""
    access = resolve(account, capability_key)
    if not access.allowed:
        return False
    if access.limit is None or access.limit == UNLIMITED:
        return True
    return current_count < access.limit
