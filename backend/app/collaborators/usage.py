"""Usage quota tracking and upgrade suggestions."""

from datetime import UTC, datetime
from typing import Protocol

from pydantic import Field

from backend.app.config import Settings
from backend.app.models.common import CamelModel, UserTier

ITINERARIES_CREATED = "itineraries_created"


class UsageSnapshot(CamelModel):
    """Usage in the current window."""

    current: int
    limit: int
    reset_at: datetime


class UsageDecision(CamelModel):
    """Result of a quota check."""

    allowed: bool
    usage: UsageSnapshot
    tier: UserTier


class UpgradeSuggestion(CamelModel):
    """Next tier up and its monthly price."""

    suggestion: str
    tier: UserTier
    price: int = Field(..., ge=0)


class UsageTracker(Protocol):
    """Protocol for quota accounting."""

    async def check_and_track(self, user_id: str, kind: str) -> UsageDecision:
        """Check the quota and count one use if allowed."""
        ...


def _next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


class InMemoryUsageTracker:
    """In-memory monthly quota tracker keyed by (user, kind, month)."""

    def __init__(
        self,
        settings: Settings,
        user_tiers: dict[str, UserTier] | None = None,
    ) -> None:
        self._limits = {
            UserTier.free: settings.free_itineraries_per_month,
            UserTier.pro: settings.pro_itineraries_per_month,
            UserTier.premium: settings.premium_itineraries_per_month,
        }
        self._default_tier = UserTier(settings.default_tier)
        self._user_tiers: dict[str, UserTier] = dict(user_tiers or {})
        self._counts: dict[tuple[str, str, str], int] = {}

    def get_tier(self, user_id: str) -> UserTier:
        return self._user_tiers.get(user_id, self._default_tier)

    async def check_and_track(
        self, user_id: str, kind: str, now: datetime | None = None
    ) -> UsageDecision:
        now = now or datetime.now(UTC)
        tier = self.get_tier(user_id)
        limit = self._limits[tier]
        key = (user_id, kind, now.strftime("%Y-%m"))
        current = self._counts.get(key, 0)

        allowed = current < limit
        if allowed:
            current += 1
            self._counts[key] = current

        return UsageDecision(
            allowed=allowed,
            usage=UsageSnapshot(current=current, limit=limit, reset_at=_next_month_start(now)),
            tier=tier,
        )


def get_upgrade_suggestion(tier: UserTier, settings: Settings) -> UpgradeSuggestion | None:
    """Suggest the next tier up, or None for the top tier."""
    if tier == UserTier.free:
        return UpgradeSuggestion(
            suggestion="Upgrade to Pro for unlimited itineraries with verified locations",
            tier=UserTier.pro,
            price=settings.pro_price_usd,
        )
    if tier == UserTier.pro:
        return UpgradeSuggestion(
            suggestion="Upgrade to Premium for full quality review on every itinerary",
            tier=UserTier.premium,
            price=settings.premium_price_usd,
        )
    return None
