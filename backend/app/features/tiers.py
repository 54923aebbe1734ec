"""Tier policy and feature flags for multi-provider orchestration.

Pure functions and frozen data only; nothing here performs I/O.
"""

from dataclasses import dataclass

from backend.app.config import Settings
from backend.app.models.common import ProviderRole, QALevel, UserTier


def is_multi_provider_enabled(tier: UserTier) -> bool:
    """Whether a tier is entitled to multi-provider orchestration.

    Free tier only ever uses the single-provider path.
    """
    return tier in (UserTier.pro, UserTier.premium)


@dataclass(frozen=True)
class TierPolicy:
    """Per-tier feature configuration.

    A tier with revision cycles revises the draft when QA does not approve it or
    scores it below `quality_target`.
    """

    tier: UserTier
    roles: tuple[ProviderRole, ...]
    qa_level: QALevel
    drafting_retries: int
    quality_target: float | None
    revision_cycles: int = 0

    def uses(self, role: ProviderRole) -> bool:
        """Check if this tier runs the given role."""
        return role in self.roles


_TIER_POLICIES: dict[UserTier, TierPolicy] = {
    UserTier.free: TierPolicy(
        tier=UserTier.free,
        roles=(ProviderRole.drafting,),
        qa_level=QALevel.none,
        drafting_retries=1,
        quality_target=None,
    ),
    UserTier.pro: TierPolicy(
        tier=UserTier.pro,
        roles=(ProviderRole.drafting, ProviderRole.validation, ProviderRole.qa),
        qa_level=QALevel.basic,
        drafting_retries=2,
        quality_target=7,
    ),
    UserTier.premium: TierPolicy(
        tier=UserTier.premium,
        roles=(ProviderRole.drafting, ProviderRole.validation, ProviderRole.qa),
        qa_level=QALevel.full,
        drafting_retries=3,
        quality_target=9,
        revision_cycles=1,
    ),
}


def get_tier_policy(tier: UserTier) -> TierPolicy:
    """Get the feature configuration for a tier."""
    return _TIER_POLICIES[tier]


@dataclass(frozen=True)
class FeatureFlags:
    """Operator switches layered over the tier entitlement."""

    multi_provider_enabled: bool = True
    free_tier: bool = False
    pro_tier: bool = True
    premium_tier: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeatureFlags":
        """Read flags from settings."""
        return cls(
            multi_provider_enabled=settings.multi_provider_enabled,
            free_tier=settings.multi_provider_free_tier,
            pro_tier=settings.multi_provider_pro_tier,
            premium_tier=settings.multi_provider_premium_tier,
        )

    def is_enabled_for_tier(self, tier: UserTier) -> bool:
        """Master switch AND per-tier override."""
        if not self.multi_provider_enabled:
            return False
        per_tier = {
            UserTier.free: self.free_tier,
            UserTier.pro: self.pro_tier,
            UserTier.premium: self.premium_tier,
        }
        return per_tier[tier]
