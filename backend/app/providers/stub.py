"""Deterministic drafting adapter for testing (no API key required)."""

import hashlib

from backend.app.models.common import ProviderRole, TimeOfDay
from backend.app.models.itinerary import Activity, DailyPlan, GeneratedItinerary
from backend.app.models.outcome import ActivityPayload, DraftPayload
from backend.app.models.request import GenerationRequest
from backend.app.providers.base import ActivityReplacement, ProviderAdapter, ProviderTask

_SLOTS = (
    ("09:00 AM", TimeOfDay.morning, "cafe", "Neighbourhood Coffee Roastery", "1 hour"),
    ("01:00 PM", TimeOfDay.afternoon, "culture", "Old Quarter Walking Loop", "2 hours"),
    ("07:00 PM", TimeOfDay.evening, "food", "Family-Run Night Market Stall", "1.5 hours"),
)


class DeterministicDraftingAdapter(ProviderAdapter):
    """Builds the same itinerary for the same request, without any network call."""

    role = ProviderRole.drafting
    provider = "stub"

    def is_configured(self) -> bool:
        return True

    async def _call(self, task: ProviderTask) -> DraftPayload | ActivityPayload:
        request = task.request
        if task.replacement is not None:
            return ActivityPayload(activity=_replacement_activity(request, task.replacement))

        interests = request.sorted_interests()
        # Stable per-city variation so different cities do not look identical
        seed = int(hashlib.sha256(request.city.lower().encode()).hexdigest()[:8], 16)

        daily_plans = []
        for day in range(1, request.days + 1):
            theme = interests[(day - 1) % len(interests)].title() if interests else "Local Life"
            activities = [
                Activity(
                    time=time,
                    time_of_day=time_of_day,
                    name=f"{request.city} {name} #{day}",
                    address=f"{(seed + day * 7 + i) % 200 + 1} Main Street, {request.city}",
                    description=f"{theme} stop on day {day}.",
                    category=category,
                    localness_score=min(6, request.localness_level + 1),
                    duration=duration,
                    cost="$",
                )
                for i, (time, time_of_day, category, name, duration) in enumerate(_SLOTS)
            ]
            daily_plans.append(
                DailyPlan(
                    day=day,
                    theme=theme,
                    activities=activities,
                    local_tip="Go early on weekdays.",
                    transport_tips="Walk or take the metro.",
                )
            )

        itinerary = GeneratedItinerary(
            title=f"{request.days} Days in {request.city}",
            subtitle="Placeholder itinerary generated without an LLM",
            city=request.city,
            days=request.days,
            daily_plans=daily_plans,
            highlights=[a.name for a in daily_plans[0].activities],
            estimated_cost=f"{request.budget} budget",
            local_score=min(10, request.localness_level * 2),
        )
        return DraftPayload(itinerary=itinerary)


def _replacement_activity(request: GenerationRequest, replacement: ActivityReplacement) -> Activity:
    day = replacement.day_index + 1
    stop = replacement.activity_index + 1
    return Activity(
        time=replacement.time,
        time_of_day=replacement.time_of_day,
        name=f"{request.city} Backstreet Favourite #{day}.{stop}",
        address=f"{stop} Side Street, {request.city}",
        description=f"Swapped in for day {day}: {replacement.requirements or 'better fit'}.",
        category=replacement.category,
        localness_score=min(6, request.localness_level + 1),
        duration="1 hour",
        cost="$",
    )
