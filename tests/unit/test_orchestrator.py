"""Unit tests for the itinerary orchestrator.

Tests cover:
1. Tier-driven role selection (free single-provider, premium all roles)
2. Degradation of validation and QA to fallback markers
3. Drafting failure as the only fatal path, with tier retry budgets
4. Merge policy for validation corrections
5. Response cache and circuit breakers
6. Cancellation
7. Progress events
8. Premium revision cycle
"""

import asyncio
from datetime import datetime

import pytest

from backend.app.cache.responses import InMemoryResponseCache
from backend.app.features.tiers import FeatureFlags
from backend.app.models.common import ProviderRole, QALevel, UserTier
from backend.app.models.events import StartEvent
from backend.app.models.outcome import DraftPayload, QualityPayload
from backend.app.models.validation import (
    LocationCheck,
    LocationStatus,
    QualityReview,
    RevisionSuggestion,
    SuggestedAction,
)
from backend.app.orchestration.orchestrator import (
    DRAFTING_FAILED_MESSAGE,
    ItineraryOrchestrator,
    merge_enrichments,
)
from backend.app.orchestration.progress import BufferedProgressChannel
from backend.app.orchestration.resilience import (
    BreakerRegistry,
    CancelToken,
    GenerationCancelledError,
)
from backend.app.providers.base import (
    ProviderAuthError,
    ProviderError,
    ProviderParseError,
)
from tests.helpers import (
    ScriptedAdapter,
    build_test_settings,
    draft_for,
    healthy_qa,
    healthy_validation,
    make_pool,
    make_request,
    quality_payload,
    validation_payload,
)


def _orchestrator(pool, sleeps: list[float] | None = None, **kwargs) -> ItineraryOrchestrator:
    settings = kwargs.pop("settings", None) or build_test_settings()
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    return ItineraryOrchestrator(pool=pool, settings=settings, sleep_fn=fake_sleep, **kwargs)


def _started_channel(token: CancelToken | None = None) -> BufferedProgressChannel:
    channel = BufferedProgressChannel(token)
    channel.emit(StartEvent())
    return channel


class TestTierRouting:
    """Test which roles run for each tier."""

    @pytest.mark.asyncio
    async def test_free_tier_seoul_uses_drafting_only(self) -> None:
        validation = healthy_validation()
        qa = healthy_qa()
        orchestrator = _orchestrator(make_pool(validation=validation, qa=qa))

        outcome = await orchestrator.generate(make_request(UserTier.free, city="Seoul", days=3))

        assert outcome.success is True
        assert outcome.itinerary is not None
        assert len(outcome.itinerary.daily_plans) == 3
        assert outcome.metrics.providers_used == [ProviderRole.drafting]
        assert outcome.quality_score is None
        assert outcome.validation_report is None
        assert outcome.fallback_used is None
        assert validation.calls == 0
        assert qa.calls == 0

    @pytest.mark.asyncio
    async def test_premium_all_healthy_uses_every_role(self) -> None:
        orchestrator = _orchestrator(make_pool(validation=healthy_validation(), qa=healthy_qa(9.1)))

        outcome = await orchestrator.generate(make_request(UserTier.premium, city="Seoul", days=3))

        assert outcome.success is True
        assert outcome.metrics.providers_used == [
            ProviderRole.drafting,
            ProviderRole.validation,
            ProviderRole.qa,
        ]
        assert outcome.quality_score == pytest.approx(9.1)
        assert outcome.fallback_used is None
        assert outcome.validation_report is not None
        assert outcome.validation_report.checked_locations == 1
        assert outcome.validation_report.approved_at is not None

    @pytest.mark.asyncio
    async def test_qa_receives_tier_level_and_location_checks(self) -> None:
        qa = healthy_qa()
        orchestrator = _orchestrator(make_pool(validation=healthy_validation(), qa=qa))

        await orchestrator.generate(make_request(UserTier.pro))

        assert qa.calls == 1
        task = qa.tasks[0]
        assert task.qa_level.value == "basic"
        assert task.draft is not None
        assert len(task.checks) == 1

    @pytest.mark.asyncio
    async def test_master_switch_off_runs_drafting_only(self) -> None:
        validation = healthy_validation()
        orchestrator = _orchestrator(
            make_pool(validation=validation, qa=healthy_qa()),
            flags=FeatureFlags(multi_provider_enabled=False),
        )

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert outcome.metrics.providers_used == [ProviderRole.drafting]
        assert validation.calls == 0

    @pytest.mark.asyncio
    async def test_unconfigured_roles_are_not_attempted(self) -> None:
        orchestrator = _orchestrator(make_pool())

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert outcome.success is True
        assert outcome.metrics.providers_used == [ProviderRole.drafting]
        assert outcome.fallback_used is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [1, 2, 5, 7, 14])
    async def test_successful_outcome_has_requested_day_count(self, days: int) -> None:
        orchestrator = _orchestrator(make_pool(validation=healthy_validation(), qa=healthy_qa()))

        outcome = await orchestrator.generate(make_request(UserTier.premium, days=days))

        assert outcome.itinerary is not None
        assert outcome.itinerary.days == days
        assert [p.day for p in outcome.itinerary.daily_plans] == list(range(1, days + 1))


class TestDegradation:
    """Test non-essential stage failures."""

    @pytest.mark.asyncio
    async def test_validation_failure_keeps_draft_and_sets_marker(self) -> None:
        request = make_request(UserTier.pro)
        validation = ScriptedAdapter(
            ProviderRole.validation, "fake-validation", [ProviderError("fake-validation", "boom")]
        )
        orchestrator = _orchestrator(make_pool(validation=validation))

        outcome = await orchestrator.generate(request)

        assert outcome.success is True
        assert outcome.fallback_used == "validation-skipped"
        assert outcome.itinerary == await draft_for(request)
        assert ProviderRole.validation not in outcome.metrics.providers_used

    @pytest.mark.asyncio
    async def test_premium_qa_timeout_sets_qa_marker(self) -> None:
        qa = ScriptedAdapter(
            ProviderRole.qa, "slow-qa", [quality_payload()], delay_s=1.0
        )
        orchestrator = _orchestrator(
            make_pool(validation=healthy_validation(), qa=qa),
            settings=build_test_settings(qa_timeout_ms=50),
        )

        outcome = await orchestrator.generate(make_request(UserTier.premium, city="Seoul"))

        assert outcome.success is True
        assert outcome.fallback_used == "qa-skipped"
        assert outcome.quality_score is None
        assert outcome.metrics.providers_used == [ProviderRole.drafting, ProviderRole.validation]

    @pytest.mark.asyncio
    async def test_both_stages_degraded_joins_markers_in_phase_order(self) -> None:
        validation = ScriptedAdapter(
            ProviderRole.validation, "v", [ProviderParseError("v", "bad json")]
        )
        qa = ScriptedAdapter(ProviderRole.qa, "q", [ProviderError("q", "down")])
        orchestrator = _orchestrator(make_pool(validation=validation, qa=qa))

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert outcome.success is True
        assert outcome.fallback_used == "validation-skipped,qa-skipped"
        assert outcome.metrics.providers_used == [ProviderRole.drafting]

    @pytest.mark.asyncio
    async def test_enrichment_failures_are_not_retried(self) -> None:
        validation = ScriptedAdapter(ProviderRole.validation, "v", [ProviderError("v", "down")])
        orchestrator = _orchestrator(make_pool(validation=validation))

        await orchestrator.generate(make_request(UserTier.premium))

        assert validation.calls == 1


class TestDraftingFailure:
    """Test the single fatal path."""

    @pytest.mark.asyncio
    async def test_drafting_failure_fails_regardless_of_other_roles(self) -> None:
        drafting = ScriptedAdapter(
            ProviderRole.drafting, "broken", [ProviderAuthError("broken", "bad key")]
        )
        validation = healthy_validation()
        qa = healthy_qa()
        orchestrator = _orchestrator(make_pool(drafting=drafting, validation=validation, qa=qa))

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert outcome.success is False
        assert outcome.itinerary is None
        assert outcome.error == DRAFTING_FAILED_MESSAGE
        assert "bad key" not in (outcome.error or "")
        assert validation.calls == 0
        assert qa.calls == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_immediately(self) -> None:
        drafting = ScriptedAdapter(ProviderRole.drafting, "broken", [ProviderAuthError("broken", "x")])
        sleeps: list[float] = []
        orchestrator = _orchestrator(make_pool(drafting=drafting), sleeps)

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert outcome.success is False
        assert drafting.calls == 1
        assert outcome.metrics.retry_count == 0
        assert sleeps == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("tier", "expected_calls"),
        [(UserTier.free, 2), (UserTier.pro, 3), (UserTier.premium, 4)],
    )
    async def test_retryable_errors_use_tier_retry_budget(
        self, tier: UserTier, expected_calls: int
    ) -> None:
        drafting = ScriptedAdapter(ProviderRole.drafting, "flaky", [ProviderParseError("flaky", "x")])
        sleeps: list[float] = []
        orchestrator = _orchestrator(make_pool(drafting=drafting), sleeps)

        outcome = await orchestrator.generate(make_request(tier))

        assert outcome.success is False
        assert drafting.calls == expected_calls
        assert outcome.metrics.retry_count == expected_calls - 1
        assert len(sleeps) == expected_calls - 1

    @pytest.mark.asyncio
    async def test_retry_recovers_after_transient_failure(self) -> None:
        request = make_request(UserTier.free)
        draft = await draft_for(request)
        drafting = ScriptedAdapter(
            ProviderRole.drafting,
            "flaky",
            [ProviderError("flaky", "reset"), DraftPayload(itinerary=draft)],
        )
        orchestrator = _orchestrator(make_pool(drafting=drafting))

        outcome = await orchestrator.generate(request)

        assert outcome.success is True
        assert outcome.metrics.retry_count == 1
        assert outcome.metrics.providers_used == [ProviderRole.drafting]


class TestMerge:
    """Test merge policy for validation checks."""

    @pytest.mark.asyncio
    async def test_high_confidence_correction_overrides_name_and_address(self) -> None:
        draft = await draft_for(make_request())
        check = LocationCheck(
            day_index=0,
            activity_index=1,
            name=draft.daily_plans[0].activities[1].name,
            status=LocationStatus.invalid,
            confidence=0.9,
            corrected_name="Bukchon Hanok Village",
            corrected_address="37 Gyedong-gil, Jongno-gu",
        )

        merged, report = merge_enrichments(draft, [check], None, 0.8)

        activity = merged.daily_plans[0].activities[1]
        assert activity.name == "Bukchon Hanok Village"
        assert activity.address == "37 Gyedong-gil, Jongno-gu"
        assert report.corrections_applied == 1
        assert report.issues[0].auto_fixed is True
        # Draft itself is untouched
        assert draft.daily_plans[0].activities[1].name != "Bukchon Hanok Village"

    @pytest.mark.asyncio
    async def test_low_confidence_correction_is_ignored(self) -> None:
        draft = await draft_for(make_request())
        original = draft.daily_plans[0].activities[0]
        check = LocationCheck(
            day_index=0,
            activity_index=0,
            name=original.name,
            status=LocationStatus.uncertain,
            confidence=0.5,
            corrected_name="Somewhere Else",
        )

        merged, report = merge_enrichments(draft, [check], None, 0.8)

        assert merged.daily_plans[0].activities[0].name == original.name
        assert report.corrections_applied == 0
        assert report.issues[0].severity.value == "warning"

    @pytest.mark.asyncio
    async def test_qa_issues_are_appended_and_advisory(self) -> None:
        draft = await draft_for(make_request())
        review = QualityReview(approved=False, quality_score=5.0, issues=[])

        merged, report = merge_enrichments(draft, [], review, 0.8)

        assert merged == draft
        assert report.approved_at is None
        assert report.revision_cycles == 0


class TestCacheAndBreakers:
    """Test response cache and per-role circuit breakers."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_drafting(self) -> None:
        request = make_request(UserTier.free)
        drafting = ScriptedAdapter(ProviderRole.drafting, "counted", [DraftPayload(itinerary=await draft_for(request))])
        orchestrator = _orchestrator(make_pool(drafting=drafting), cache=InMemoryResponseCache())

        first = await orchestrator.generate(request)
        second = await orchestrator.generate(make_request(UserTier.free))

        assert drafting.calls == 1
        assert first.metrics.cache_hits == 0
        assert second.metrics.cache_hits == 1
        assert second.metrics.providers_used == []
        assert second.itinerary == first.itinerary

    @pytest.mark.asyncio
    async def test_template_prompt_bypasses_cache(self) -> None:
        drafting = ScriptedAdapter(
            ProviderRole.drafting, "counted", [DraftPayload(itinerary=await draft_for(make_request()))]
        )
        orchestrator = _orchestrator(make_pool(drafting=drafting), cache=InMemoryResponseCache())

        await orchestrator.generate(make_request(template_prompt="Food crawl"))
        await orchestrator.generate(make_request(template_prompt="Food crawl"))

        assert drafting.calls == 2

    @pytest.mark.asyncio
    async def test_open_breaker_skips_validation_with_marker(self) -> None:
        validation = ScriptedAdapter(ProviderRole.validation, "v", [ProviderError("v", "down")])
        breakers = BreakerRegistry(failure_threshold=2, window_seconds=60, half_open_seconds=30)
        orchestrator = _orchestrator(make_pool(validation=validation), breakers=breakers)

        for _ in range(3):
            outcome = await orchestrator.generate(make_request(UserTier.pro))
            assert outcome.fallback_used == "validation-skipped"

        # Third attempt short-circuits on the open breaker
        assert validation.calls == 2
        assert breakers.states()["validation"] == "open"

    @pytest.mark.asyncio
    async def test_half_open_breaker_admits_one_concurrent_call(self) -> None:
        validation = ScriptedAdapter(
            ProviderRole.validation, "v", [validation_payload()], delay_s=0.05
        )
        breakers = BreakerRegistry(failure_threshold=1, window_seconds=60, half_open_seconds=0)
        breakers.get("validation").record_failure(datetime.now())
        orchestrator = _orchestrator(make_pool(validation=validation), breakers=breakers)

        outcomes = await asyncio.gather(
            orchestrator.generate(make_request(UserTier.pro)),
            orchestrator.generate(make_request(UserTier.pro)),
        )

        assert validation.calls == 1
        assert sorted(o.fallback_used or "" for o in outcomes) == ["", "validation-skipped"]
        assert breakers.states()["validation"] == "closed"

    @pytest.mark.asyncio
    async def test_health_status_reports_providers_breakers_and_cache(self) -> None:
        orchestrator = _orchestrator(
            make_pool(validation=healthy_validation()), cache=InMemoryResponseCache()
        )
        await orchestrator.generate(make_request(UserTier.pro))

        status = orchestrator.get_health_status()

        assert status["providers"]["drafting"] == {"provider": "stub", "configured": True}
        assert status["providers"]["qa"]["configured"] is False
        assert status["circuitBreakers"]["validation"] == "closed"
        assert status["cache"]["backend"] == "memory"


class TestCancellationAndProgress:
    """Test cancellation and progress events."""

    @pytest.mark.asyncio
    async def test_cancellation_stops_calls_and_events(self) -> None:
        request = make_request(UserTier.premium)
        drafting = ScriptedAdapter(
            ProviderRole.drafting, "slow", [DraftPayload(itinerary=await draft_for(request))], delay_s=5.0
        )
        validation = healthy_validation()
        orchestrator = _orchestrator(make_pool(drafting=drafting, validation=validation))
        token = CancelToken()
        channel = _started_channel(token)

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(GenerationCancelledError):
            await orchestrator.generate(request, channel=channel, cancel_token=token)
        await canceller
        await asyncio.sleep(0.01)

        assert drafting.cancelled is True
        assert validation.calls == 0
        assert [e.type for e in channel.events] == ["start", "phase1"]
        assert channel.emit(StartEvent()) is False

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_invokes_nothing(self) -> None:
        drafting = ScriptedAdapter(ProviderRole.drafting, "never", [ProviderError("never", "x")])
        orchestrator = _orchestrator(make_pool(drafting=drafting))
        token = CancelToken()
        token.cancel()

        with pytest.raises(GenerationCancelledError):
            await orchestrator.generate(make_request(), cancel_token=token)

        assert drafting.calls == 0

    @pytest.mark.asyncio
    async def test_progress_percent_is_monotonic(self) -> None:
        orchestrator = _orchestrator(make_pool(validation=healthy_validation(), qa=healthy_qa()))
        channel = _started_channel()

        await orchestrator.generate(make_request(UserTier.premium), channel=channel)

        percents = [e.percent for e in channel.events]
        assert percents == sorted(percents)
        assert [e.type for e in channel.events] == [
            "start",
            "phase1",
            "progress",
            "progress",
            "phase2",
        ]
        assert channel.events[1].providers == ["drafting", "validation", "qa"]



def _review_with_replacement(score: float, approved: bool = False) -> QualityPayload:
    return QualityPayload(
        review=QualityReview(
            approved=approved,
            quality_score=score,
            suggestions=[
                RevisionSuggestion(
                    day_index=0,
                    activity_index=1,
                    current_name="Seoul Old Quarter Walking Loop #1",
                    suggested_action=SuggestedAction.replace,
                    reason="Closed for renovation",
                ),
                RevisionSuggestion(
                    day_index=1,
                    activity_index=0,
                    suggested_action=SuggestedAction.modify,
                    reason="Start later",
                ),
            ],
        )
    )


class TestRevisionCycle:
    """Test the bounded revision pass for tiers that allow one."""

    @pytest.mark.asyncio
    async def test_premium_replaces_flagged_activity_and_uses_re_review(self) -> None:
        request = make_request(UserTier.premium)
        draft = await draft_for(request)
        qa = ScriptedAdapter(
            ProviderRole.qa, "fake-qa", [_review_with_replacement(6.0), quality_payload(9.4)]
        )
        orchestrator = _orchestrator(make_pool(validation=healthy_validation(), qa=qa))
        channel = _started_channel()

        outcome = await orchestrator.generate(request, channel=channel)

        assert outcome.success is True
        assert outcome.itinerary is not None
        revised = outcome.itinerary.daily_plans[0].activities[1]
        assert revised.name == "Seoul Backstreet Favourite #1.2"
        assert revised.time == draft.daily_plans[0].activities[1].time
        # Untouched activities survive
        assert outcome.itinerary.daily_plans[1] == draft.daily_plans[1]
        assert outcome.quality_score == pytest.approx(9.4)
        assert outcome.validation_report is not None
        assert outcome.validation_report.revision_cycles == 1
        assert outcome.fallback_used is None
        assert outcome.metrics.providers_used == [
            ProviderRole.drafting,
            ProviderRole.validation,
            ProviderRole.qa,
        ]
        assert qa.calls == 2
        assert qa.tasks[1].qa_level == QALevel.quick
        assert qa.tasks[1].draft is not None
        assert qa.tasks[1].draft.daily_plans[0].activities[1].name == revised.name
        percents = [e.percent for e in channel.events]
        assert percents == sorted(percents)
        assert channel.events[-1].type == "progress"

    @pytest.mark.asyncio
    async def test_approved_review_below_target_still_revises(self) -> None:
        qa = ScriptedAdapter(
            ProviderRole.qa,
            "fake-qa",
            [_review_with_replacement(8.0, approved=True), quality_payload(9.1)],
        )
        orchestrator = _orchestrator(make_pool(qa=qa))

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert qa.calls == 2
        assert outcome.validation_report is not None
        assert outcome.validation_report.revision_cycles == 1

    @pytest.mark.asyncio
    async def test_failed_replacement_keeps_reviewed_draft(self) -> None:
        request = make_request(UserTier.premium)
        draft = await draft_for(request)
        drafting = ScriptedAdapter(
            ProviderRole.drafting,
            "flaky",
            [DraftPayload(itinerary=draft), ProviderError("flaky", "down")],
        )
        qa = ScriptedAdapter(ProviderRole.qa, "fake-qa", [_review_with_replacement(6.0)])
        orchestrator = _orchestrator(make_pool(drafting=drafting, qa=qa))

        outcome = await orchestrator.generate(request)

        assert outcome.success is True
        assert outcome.itinerary == draft
        assert outcome.quality_score == pytest.approx(6.0)
        assert outcome.validation_report is not None
        assert outcome.validation_report.revision_cycles == 0
        assert outcome.fallback_used is None
        assert drafting.calls == 2
        assert drafting.tasks[1].replacement is not None
        assert drafting.tasks[1].replacement.requirements == "Closed for renovation"
        assert qa.calls == 1

    @pytest.mark.asyncio
    async def test_failed_re_review_keeps_reviewed_draft(self) -> None:
        request = make_request(UserTier.premium)
        qa = ScriptedAdapter(
            ProviderRole.qa,
            "fake-qa",
            [_review_with_replacement(6.0), ProviderError("fake-qa", "down")],
        )
        orchestrator = _orchestrator(make_pool(qa=qa))

        outcome = await orchestrator.generate(request)

        assert outcome.itinerary == await draft_for(request)
        assert outcome.quality_score == pytest.approx(6.0)
        assert outcome.validation_report is not None
        assert outcome.validation_report.revision_cycles == 0
        assert outcome.fallback_used is None
        assert qa.calls == 2

    @pytest.mark.asyncio
    async def test_pro_tier_never_revises(self) -> None:
        request = make_request(UserTier.pro)
        drafting = ScriptedAdapter(
            ProviderRole.drafting, "counted", [DraftPayload(itinerary=await draft_for(request))]
        )
        qa = ScriptedAdapter(ProviderRole.qa, "fake-qa", [_review_with_replacement(4.0)])
        orchestrator = _orchestrator(make_pool(drafting=drafting, qa=qa))

        outcome = await orchestrator.generate(request)

        assert drafting.calls == 1
        assert qa.calls == 1
        assert outcome.validation_report is not None
        assert outcome.validation_report.revision_cycles == 0

    @pytest.mark.asyncio
    async def test_review_meeting_target_is_not_revised(self) -> None:
        qa = ScriptedAdapter(
            ProviderRole.qa, "fake-qa", [_review_with_replacement(9.5, approved=True)]
        )
        orchestrator = _orchestrator(make_pool(qa=qa))

        outcome = await orchestrator.generate(make_request(UserTier.premium))

        assert qa.calls == 1
        assert outcome.quality_score == pytest.approx(9.5)
