"""
Capability registry for plan entitlements.

Every feature flag and numeric limit an account can be granted is listed here.
Plan configs and per-account overrides are keyed by these values; anything
else is not a capability.
"""
import logging
from dataclasses import dataclass, field

from django.db import models

logger = logging.getLogger(__name__)

# Numeric limit meaning "no limit"
UNLIMITED = -1

BOOLEAN = 'boolean'
NUMBER = 'number'


class Capability(models.TextChoices):
    # Profile
    PUBLIC_PROFILE = 'publicProfile', 'Public profile'
    PROFESSIONAL_PROFILE = 'professionalProfile', 'Professional profile'
    BIO_MAX_LENGTH = 'bioMaxLength', 'Bio length limit'
    COVER_IMAGE = 'coverImage', 'Profile cover image'
    CALL_TO_ACTION = 'callToAction', 'Custom call to action'
    CUSTOM_FIELDS = 'customFields', 'Custom profile fields'
    MAX_SOCIAL_LINKS = 'maxSocialLinks', 'Social links'

    # Galleries
    HIDE_BRANDING = 'hideBranding', 'Hide platform branding'
    WHITE_LABEL = 'whiteLabel', 'Full white label'
    CUSTOM_DOMAIN = 'customDomain', 'Custom domain'
    MANUAL_ORDERING = 'manualOrdering', 'Manual ordering'
    MAX_IMAGES_PER_PROJECT = 'maxImagesPerProject', 'Images per gallery'
    VIDEO_GALLERY = 'videoGallery', 'Video galleries'
    PASSWORD_PROTECTION = 'passwordProtection', 'Password-protected galleries'
    HIGH_RES_DOWNLOADS = 'highResDownloads', 'High resolution downloads'
    LOW_RES_DOWNLOADS = 'lowResDownloads', 'Low resolution downloads'
    CUSTOM_WATERMARK = 'customWatermark', 'Custom watermark'
    DUPLICATE_GALLERY = 'duplicateGallery', 'Duplicate galleries'

    # System
    MAX_PROJECTS = 'maxProjects', 'Galleries'
    MAX_CLOUD_ACCOUNTS = 'maxCloudAccounts', 'Linked cloud accounts'
    PRIORITY_SUPPORT = 'prioritySupport', 'Priority support'

    # Analytics
    BASIC_INSIGHTS = 'basicInsights', 'Basic insights'
    ADVANCED_INSIGHTS = 'advancedInsights', 'Advanced insights'

    # Collaboration
    COLLABORATIVE_GALLERIES = 'collaborativeGalleries', 'Collaborative galleries'
    MAX_SCENA_PROJECTS = 'maxScenaProjects', 'Project boards'

    # Booking & payments
    BOOKING_CONFIG = 'bookingConfig', 'Booking calendar'
    BOOKING_WINDOW = 'bookingWindow', 'Booking window (weeks)'
    BOOKING_PAYMENTS = 'bookingPayments', 'Booking payments'
    CALENDAR_SYNC = 'calendarSync', 'Calendar sync'
    STRIPE_INTEGRATION = 'stripeIntegration', 'Stripe payments'


@dataclass(frozen=True)
class FeatureDefinition:
    kind: str
    default: object

    @property
    def is_numeric(self):
        return self.kind == NUMBER


FEATURE_POOL = {
    Capability.PUBLIC_PROFILE: FeatureDefinition(BOOLEAN, True),
    Capability.PROFESSIONAL_PROFILE: FeatureDefinition(BOOLEAN, False),
    Capability.BIO_MAX_LENGTH: FeatureDefinition(NUMBER, 150),
    Capability.COVER_IMAGE: FeatureDefinition(BOOLEAN, False),
    Capability.CALL_TO_ACTION: FeatureDefinition(BOOLEAN, False),
    Capability.CUSTOM_FIELDS: FeatureDefinition(BOOLEAN, False),
    Capability.MAX_SOCIAL_LINKS: FeatureDefinition(NUMBER, 1),
    Capability.HIDE_BRANDING: FeatureDefinition(BOOLEAN, False),
    Capability.WHITE_LABEL: FeatureDefinition(BOOLEAN, False),
    Capability.CUSTOM_DOMAIN: FeatureDefinition(BOOLEAN, False),
    Capability.MANUAL_ORDERING: FeatureDefinition(BOOLEAN, False),
    Capability.MAX_IMAGES_PER_PROJECT: FeatureDefinition(NUMBER, 20),
    Capability.VIDEO_GALLERY: FeatureDefinition(BOOLEAN, False),
    Capability.PASSWORD_PROTECTION: FeatureDefinition(BOOLEAN, False),
    Capability.HIGH_RES_DOWNLOADS: FeatureDefinition(BOOLEAN, False),
    Capability.LOW_RES_DOWNLOADS: FeatureDefinition(BOOLEAN, True),
    Capability.CUSTOM_WATERMARK: FeatureDefinition(BOOLEAN, False),
    Capability.DUPLICATE_GALLERY: FeatureDefinition(BOOLEAN, False),
    Capability.MAX_PROJECTS: FeatureDefinition(NUMBER, 1),
    Capability.MAX_CLOUD_ACCOUNTS: FeatureDefinition(NUMBER, 1),
    Capability.PRIORITY_SUPPORT: FeatureDefinition(BOOLEAN, False),
    Capability.BASIC_INSIGHTS: FeatureDefinition(BOOLEAN, False),
    Capability.ADVANCED_INSIGHTS: FeatureDefinition(BOOLEAN, False),
    Capability.COLLABORATIVE_GALLERIES: FeatureDefinition(BOOLEAN, False),
    Capability.MAX_SCENA_PROJECTS: FeatureDefinition(NUMBER, 0),
    Capability.BOOKING_CONFIG: FeatureDefinition(BOOLEAN, False),
    Capability.BOOKING_WINDOW: FeatureDefinition(NUMBER, 4),
    Capability.BOOKING_PAYMENTS: FeatureDefinition(BOOLEAN, False),
    Capability.CALENDAR_SYNC: FeatureDefinition(BOOLEAN, False),
    Capability.STRIPE_INTEGRATION: FeatureDefinition(BOOLEAN, False),
}


def get_definition(capability):
    return FEATURE_POOL[Capability(capability)]


def parse_capability(key):
    """Return the Capability for ``key`` or None if it is not a known capability."""
    try:
        return Capability(key)
    except ValueError:
        return None


def is_valid_override(capability, value):
    """Overrides are a bool, an integer limit, or None (unset)."""
    if value is None or isinstance(value, bool):
        return True
    return isinstance(value, int) and get_definition(capability).is_numeric


@dataclass
class PlanConfig:
    """
    Typed view of a plan's ``config`` JSON blob.

    ``features`` maps boolean capabilities to on/off, ``limits`` maps numeric
    capabilities to an integer limit (UNLIMITED for no limit).
    """
    features: dict = field(default_factory=dict)
    limits: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw, strict=False):
        """
        Build a PlanConfig from stored JSON.

        Unknown keys and mistyped values are dropped with a warning, or raise
        ValueError when ``strict`` is set (used when an operator edits a plan).
        """
        raw = raw or {}
        config = cls()

        for key, value in (raw.get('features') or {}).items():
            capability = parse_capability(key)
            if (
                capability is None
                or not isinstance(value, bool)
                or get_definition(capability).is_numeric
            ):
                config._reject('features', key, value, strict)
                continue
            config.features[capability] = value

        for key, value in (raw.get('limits') or {}).items():
            capability = parse_capability(key)
            if (
                capability is None
                or isinstance(value, bool)
                or not isinstance(value, int)
                or not get_definition(capability).is_numeric
            ):
                config._reject('limits', key, value, strict)
                continue
            config.limits[capability] = value

        return config

    @staticmethod
    def _reject(section, key, value, strict):
        message = f'Invalid plan config entry {section}.{key}={value!r}'
        if strict:
            raise ValueError(message)
        logger.warning(message)

    def lookup(self, capability):
        """Return ('feature', bool), ('limit', int) or None when the plan does not define it."""
        if capability in self.features:
            return ('feature', self.features[capability])
        if capability in self.limits:
            return ('limit', self.limits[capability])
        return None

    def to_json(self):
        return {
            'features': {str(k.value): v for k, v in self.features.items()},
            'limits': {str(k.value): v for k, v in self.limits.items()},
        }
