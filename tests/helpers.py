"""Fake adapters and builders shared by the test suites."""

import asyncio
from collections.abc import Sequence

from backend.app.config import Settings
from backend.app.models.common import ProviderRole, UserTier
from backend.app.models.itinerary import GeneratedItinerary
from backend.app.models.outcome import DraftPayload, QualityPayload, ValidationPayload
from backend.app.models.request import GenerationRequest
from backend.app.models.validation import LocationCheck, LocationStatus, QualityReview
from backend.app.providers.base import AdapterPayload, ProviderAdapter, ProviderPool, ProviderTask
from backend.app.providers.stub import DeterministicDraftingAdapter


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays scripted payloads or exceptions, one per call.

    The last script entry repeats once the script is exhausted.
    """

    def __init__(
        self,
        role: ProviderRole,
        provider: str,
        script: Sequence[AdapterPayload | Exception],
        delay_s: float = 0.0,
        configured: bool = True,
    ) -> None:
        self.role = role
        self.provider = provider
        self._script = list(script)
        self._delay_s = delay_s
        self._configured = configured
        self.calls = 0
        self.tasks: list[ProviderTask] = []
        self.cancelled = False

    def is_configured(self) -> bool:
        return self._configured

    async def _call(self, task: ProviderTask) -> AdapterPayload:
        self.calls += 1
        self.tasks.append(task)
        try:
            if self._delay_s:
                await asyncio.sleep(self._delay_s)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        item = self._script[min(self.calls - 1, len(self._script) - 1)]
        if isinstance(item, Exception):
            raise item
        return item


def make_request(
    tier: UserTier = UserTier.free,
    city: str = "Seoul",
    days: int = 3,
    interests: frozenset[str] = frozenset({"food", "culture"}),
    template_prompt: str | None = None,
) -> GenerationRequest:
    """Build a generation request with sensible defaults."""
    return GenerationRequest(
        city=city,
        days=days,
        interests=interests,
        tier=tier,
        user_id="user-1",
        template_prompt=template_prompt,
    )


async def draft_for(request: GenerationRequest) -> GeneratedItinerary:
    """The deterministic draft the stub adapter produces for a request."""
    payload = await DeterministicDraftingAdapter()._call(ProviderTask(request=request))
    return payload.itinerary


def validation_payload(checks: list[LocationCheck] | None = None) -> ValidationPayload:
    return ValidationPayload(
        checks=checks
        if checks is not None
        else [
            LocationCheck(
                day_index=0,
                activity_index=0,
                name="Seoul Neighbourhood Coffee Roastery #1",
                status=LocationStatus.verified,
                confidence=0.95,
            )
        ]
    )


def quality_payload(score: float = 8.5, approved: bool = True) -> QualityPayload:
    return QualityPayload(review=QualityReview(approved=approved, quality_score=score))


def make_pool(
    drafting: ProviderAdapter | None = None,
    validation: ProviderAdapter | None = None,
    qa: ProviderAdapter | None = None,
) -> ProviderPool:
    """Bind adapters to roles; drafting defaults to the deterministic stub."""
    adapters: dict[ProviderRole, ProviderAdapter] = {
        ProviderRole.drafting: drafting or DeterministicDraftingAdapter()
    }
    if validation is not None:
        adapters[ProviderRole.validation] = validation
    if qa is not None:
        adapters[ProviderRole.qa] = qa
    return ProviderPool(adapters)


def healthy_validation() -> ScriptedAdapter:
    return ScriptedAdapter(ProviderRole.validation, "fake-validation", [validation_payload()])


def healthy_qa(score: float = 8.5) -> ScriptedAdapter:
    return ScriptedAdapter(ProviderRole.qa, "fake-qa", [quality_payload(score)])


def build_test_settings(**overrides: object) -> Settings:
    """Settings isolated from the environment: no keys, no Redis, no jitter."""
    values: dict[str, object] = {
        "openai_api_key": None,
        "gemini_api_key": None,
        "anthropic_api_key": None,
        "redis_url": None,
        "gamification_award_url": None,
        "retry_jitter_min_ms": 0,
        "retry_jitter_max_ms": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]
