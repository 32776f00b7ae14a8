"""
Typed referral programme configuration.

Profiles store their config as JSON; an assignment may carry an override
blob that is merged section by section over its profile's config. Values
left unset fall back to the REFERRAL_DEFAULT_* settings.
"""
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import List, Optional

from django.conf import settings

PERCENTAGE = 'PERCENTAGE'
FIXED = 'FIXED'
HYBRID = 'HYBRID'
REWARD_TYPES = (PERCENTAGE, FIXED, HYBRID)


def _decimal(value):
    if value is None:
        return None
    return Decimal(str(value))


@dataclass(frozen=True)
class RewardConfig:
    type: Optional[str] = None
    percentage: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None

    @classmethod
    def from_json(cls, raw):
        raw = raw or {}
        reward_type = raw.get('type')
        if reward_type is not None and reward_type not in REWARD_TYPES:
            raise ValueError(f'Unknown reward type {reward_type!r}')
        return cls(
            type=reward_type,
            percentage=_decimal(raw.get('percentage')),
            fixed_amount=_decimal(raw.get('fixed_amount')),
        )


@dataclass(frozen=True)
class Tier:
    min_referrals: int
    percentage: Decimal


@dataclass(frozen=True)
class LimitsConfig:
    max_monthly_commission: Optional[Decimal] = None

    @classmethod
    def from_json(cls, raw):
        raw = raw or {}
        return cls(max_monthly_commission=_decimal(raw.get('max_monthly_commission')))


@dataclass(frozen=True)
class QualificationConfig:
    grace_period_days: Optional[int] = None

    @classmethod
    def from_json(cls, raw):
        raw = raw or {}
        days = raw.get('grace_period_days')
        return cls(grace_period_days=int(days) if days is not None else None)


@dataclass(frozen=True)
class PayoutSettings:
    min_threshold: Optional[Decimal] = None

    @classmethod
    def from_json(cls, raw):
        raw = raw or {}
        return cls(min_threshold=_decimal(raw.get('min_threshold')))


def _merge_section(base, override):
    """Fields set on ``override`` win; unset (None) fields keep ``base``."""
    changes = {
        f.name: getattr(override, f.name)
        for f in fields(override)
        if getattr(override, f.name) is not None
    }
    return replace(base, **changes)


@dataclass(frozen=True)
class ProfileConfig:
    reward: RewardConfig = field(default_factory=RewardConfig)
    tiers: Optional[List[Tier]] = None
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    qualification: QualificationConfig = field(default_factory=QualificationConfig)
    payout_settings: PayoutSettings = field(default_factory=PayoutSettings)

    @classmethod
    def from_json(cls, raw):
        """Parse a stored config blob. Raises ValueError on malformed input."""
        raw = raw or {}
        tiers = raw.get('tiers')
        return cls(
            reward=RewardConfig.from_json(raw.get('reward')),
            tiers=[
                Tier(min_referrals=int(t['min_referrals']), percentage=Decimal(str(t['percentage'])))
                for t in tiers
            ] if tiers is not None else None,
            limits=LimitsConfig.from_json(raw.get('limits')),
            qualification=QualificationConfig.from_json(raw.get('qualification')),
            payout_settings=PayoutSettings.from_json(raw.get('payout_settings')),
        )

    def merged_with(self, override):
        """Return this config with ``override`` (a ProfileConfig or None) applied on top."""
        if override is None:
            return self
        return ProfileConfig(
            reward=_merge_section(self.reward, override.reward),
            tiers=override.tiers if override.tiers is not None else self.tiers,
            limits=_merge_section(self.limits, override.limits),
            qualification=_merge_section(self.qualification, override.qualification),
            payout_settings=_merge_section(self.payout_settings, override.payout_settings),
        )

    # Resolved values

    @property
    def reward_type(self):
        return self.reward.type or PERCENTAGE

    @property
    def grace_period_days(self):
        days = self.qualification.grace_period_days
        return days if days is not None else settings.REFERRAL_DEFAULT_GRACE_DAYS

    @property
    def min_threshold(self):
        threshold = self.payout_settings.min_threshold
        if threshold is not None:
            return threshold
        return Decimal(str(settings.REFERRAL_DEFAULT_MIN_PAYOUT))

    def rate_for(self, converted_count):
        """Commission rate for an assignment with ``converted_count`` conversions."""
        base_rate = self.reward.percentage or Decimal('0')
        if not self.tiers:
            return base_rate
        for tier in sorted(self.tiers, key=lambda t: t.min_referrals, reverse=True):
            if converted_count >= tier.min_referrals:
                return tier.percentage
        return base_rate


DEFAULT_AFFILIATE_CONFIG = {
    'reward': {'type': PERCENTAGE, 'percentage': '0.15'},
    'limits': {'max_monthly_commission': '10000'},
    'tiers': [
        {'min_referrals': 0, 'percentage': '0.10'},
        {'min_referrals': 5, 'percentage': '0.15'},
        {'min_referrals': 20, 'percentage': '0.20'},
    ],
    'qualification': {'grace_period_days': 30},
    'payout_settings': {'min_threshold': '500'},
}

DEFAULT_CUSTOMER_CONFIG = {
    'reward': {'type': FIXED, 'fixed_amount': '10'},
    'qualification': {'grace_period_days': 0},
}
