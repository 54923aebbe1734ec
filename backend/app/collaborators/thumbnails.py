"""Activity thumbnail enrichment."""

from typing import Protocol
from urllib.parse import quote

from backend.app.models.itinerary import DailyPlan

PLACEHOLDER_BASE_URL = "https://placehold.co/400x300"

_CATEGORY_COLORS = {
    "food": "f97316",
    "cafe": "a16207",
    "culture": "7c3aed",
    "nature": "16a34a",
    "shopping": "db2777",
    "nightlife": "1e3a8a",
}
_DEFAULT_COLOR = "64748b"


class ThumbnailService(Protocol):
    """Protocol for attaching images to activities."""

    async def add_thumbnails(self, daily_plans: list[DailyPlan], city: str) -> list[DailyPlan]:
        """Return plans with images filled in where missing."""
        ...


def placeholder_image(category: str, name: str) -> str:
    """Deterministic placeholder image URL for an activity."""
    color = _CATEGORY_COLORS.get(category.lower(), _DEFAULT_COLOR)
    return f"{PLACEHOLDER_BASE_URL}/{color}/ffffff?text={quote(name[:40])}"


def with_placeholders(daily_plans: list[DailyPlan]) -> list[DailyPlan]:
    """Copy of the plans with placeholder images; existing images are kept."""
    result = []
    for plan in daily_plans:
        activities = [
            a if a.image else a.model_copy(update={"image": placeholder_image(a.category, a.name)})
            for a in plan.activities
        ]
        result.append(plan.model_copy(update={"activities": activities}))
    return result


class PlaceholderThumbnailService:
    """Category-coloured placeholder images; never overwrites an existing image."""

    async def add_thumbnails(self, daily_plans: list[DailyPlan], city: str) -> list[DailyPlan]:
        return with_placeholders(daily_plans)
