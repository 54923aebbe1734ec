"""Multi-provider itinerary orchestration.

Drives one generation attempt through
idle -> drafting -> (validating) -> (quality_check) -> merging -> done | failed.

Only drafting is essential. Validation and quality assurance degrade to a
fallback marker on any failure, timeout or open circuit. Tiers with revision
cycles may replace activities QA flagged and re-review once; a failed revision
keeps the reviewed draft.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from backend.app.cache.responses import ResponseCache, fingerprint_request
from backend.app.config import Settings
from backend.app.features.tiers import FeatureFlags, TierPolicy, get_tier_policy
from backend.app.models.common import (
    RETRYABLE_ERROR_KINDS,
    FallbackMarker,
    ProviderErrorKind,
    ProviderRole,
    QALevel,
)
from backend.app.models.events import Phase1Event, Phase2Event, ProgressEvent, ProgressUpdate
from backend.app.models.itinerary import Activity, GeneratedItinerary
from backend.app.models.outcome import (
    ActivityPayload,
    DraftPayload,
    GenerationMetrics,
    GenerationOutcome,
    ProviderResult,
    QualityPayload,
    ValidationPayload,
)
from backend.app.models.request import GenerationRequest
from backend.app.models.validation import (
    IssueSeverity,
    IssueType,
    LocationCheck,
    LocationStatus,
    QualityReview,
    RevisionSuggestion,
    SuggestedAction,
    ValidationIssue,
    ValidationReport,
)
from backend.app.orchestration.progress import ProgressChannel
from backend.app.orchestration.resilience import BreakerRegistry, CancelToken, GenerationCancelledError
from backend.app.providers.base import ActivityReplacement, ProviderPool, ProviderTask
from backend.app.utils.logging import StructuredProviderLogger
from backend.app.utils.metrics import PrometheusGenerationMetrics

logger = logging.getLogger(__name__)

DRAFTING_FAILED_MESSAGE = "Failed to generate itinerary. Please try again."


class OrchestratorState(str, Enum):
    """Lifecycle state of one generation attempt."""

    idle = "idle"
    drafting = "drafting"
    validating = "validating"
    quality_check = "quality_check"
    merging = "merging"
    done = "done"
    failed = "failed"


@dataclass
class _Attempt:
    """Mutable bookkeeping for one attempt; never shared between attempts."""

    request: GenerationRequest
    policy: TierPolicy
    token: CancelToken
    channel: ProgressChannel | None
    deadline: float
    started: float
    state: OrchestratorState = OrchestratorState.idle
    providers_used: list[ProviderRole] = field(default_factory=list)
    markers: list[FallbackMarker] = field(default_factory=list)
    cache_hits: int = 0
    retry_count: int = 0


def merge_enrichments(
    draft: GeneratedItinerary,
    checks: list[LocationCheck],
    review: QualityReview | None,
    confidence_threshold: float,
    revision_cycles: int = 0,
) -> tuple[GeneratedItinerary, ValidationReport]:
    """Merge validation checks and QA findings into the draft.

    The draft is the baseline and is not mutated. A check at or above the
    confidence threshold replaces name/address with its corrected values.
    Invalid or uncertain locations become issues. QA issues are appended as-is.
    """
    itinerary = draft.model_copy(deep=True)
    issues: list[ValidationIssue] = []
    corrections = 0

    for check in checks:
        activity = itinerary.daily_plans[check.day_index].activities[check.activity_index]
        corrected = False
        if check.confidence >= confidence_threshold:
            if check.corrected_name and check.corrected_name != activity.name:
                activity.name = check.corrected_name
                corrected = True
            if check.corrected_address and check.corrected_address != activity.address:
                activity.address = check.corrected_address
                corrected = True
        if corrected:
            corrections += 1

        if check.status != LocationStatus.verified:
            issues.append(
                ValidationIssue(
                    type=IssueType.location,
                    severity=(
                        IssueSeverity.error
                        if check.status == LocationStatus.invalid
                        else IssueSeverity.warning
                    ),
                    day_index=check.day_index,
                    activity_index=check.activity_index,
                    message=f"Could not verify '{check.name}'"
                    + (f": {check.reason}" if check.reason else ""),
                    auto_fixed=corrected,
                )
            )

    approved_at = None
    if review is not None:
        issues.extend(review.issues)
        if review.approved:
            approved_at = datetime.now(UTC)

    report = ValidationReport(
        issues=issues,
        checked_locations=len(checks),
        corrections_applied=corrections,
        revision_cycles=revision_cycles,
        approved_at=approved_at,
    )
    return itinerary, report


def _needs_revision(policy: TierPolicy, review: QualityReview) -> bool:
    target = policy.quality_target
    below_target = target is not None and review.quality_score < target
    if review.approved and not below_target:
        return False
    return any(s.suggested_action == SuggestedAction.replace for s in review.suggestions)


def _replace_suggestions(
    draft: GeneratedItinerary, review: QualityReview
) -> list[RevisionSuggestion]:
    """Replace suggestions that point at a real activity, first one per position."""
    seen: set[tuple[int, int]] = set()
    selected: list[RevisionSuggestion] = []
    for suggestion in review.suggestions:
        position = (suggestion.day_index, suggestion.activity_index)
        if suggestion.suggested_action != SuggestedAction.replace or position in seen:
            continue
        if suggestion.day_index >= len(draft.daily_plans):
            continue
        if suggestion.activity_index >= len(draft.daily_plans[suggestion.day_index].activities):
            continue
        seen.add(position)
        selected.append(suggestion)
    return selected


class ItineraryOrchestrator:
    """Coordinates provider roles for one request at a time.

    Safe to share across concurrent requests: all per-attempt state lives in
    `_Attempt`; breakers and the cache are the only shared mutable state.
    """

    def __init__(
        self,
        pool: ProviderPool,
        settings: Settings,
        cache: ResponseCache | None = None,
        flags: FeatureFlags | None = None,
        breakers: BreakerRegistry | None = None,
        metrics: PrometheusGenerationMetrics | None = None,
        provider_logger: StructuredProviderLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._pool = pool
        self._settings = settings
        self._cache = cache
        self._flags = flags or FeatureFlags.from_settings(settings)
        self._breakers = breakers or BreakerRegistry(
            failure_threshold=settings.circuit_breaker_failures,
            window_seconds=settings.circuit_breaker_window_sec,
            half_open_seconds=settings.circuit_breaker_half_open_sec,
            half_open_max_calls=settings.circuit_breaker_half_open_calls,
        )
        self._metrics = metrics or PrometheusGenerationMetrics()
        self._provider_logger = provider_logger or StructuredProviderLogger()
        self._clock = clock
        self._sleep = sleep_fn or asyncio.sleep

    @property
    def flags(self) -> FeatureFlags:
        return self._flags

    @property
    def breakers(self) -> BreakerRegistry:
        return self._breakers

    async def generate(
        self,
        request: GenerationRequest,
        channel: ProgressChannel | None = None,
        cancel_token: CancelToken | None = None,
    ) -> GenerationOutcome:
        """Run one generation attempt.

        Args:
            request: Immutable generation input
            channel: Optional progress sink (start/terminal events belong to the caller)
            cancel_token: Optional cancellation signal

        Returns:
            GenerationOutcome; success=False only when drafting failed

        Raises:
            GenerationCancelledError: Token fired before the attempt finished
        """
        now = self._clock()
        attempt = _Attempt(
            request=request,
            policy=get_tier_policy(request.tier),
            token=cancel_token or CancelToken(),
            channel=channel,
            deadline=now + self._settings.request_budget_ms / 1000,
            started=now,
        )

        try:
            outcome = await self._run(attempt)
        except GenerationCancelledError:
            self._metrics.inc_generation(request.tier.value, "cancelled")
            logger.info(
                f"Generation cancelled in state {attempt.state.value}",
                extra={"structured": {"request_id": request.request_id}},
            )
            raise

        self._metrics.inc_generation(request.tier.value, "success" if outcome.success else "failure")
        for marker in attempt.markers:
            self._metrics.inc_fallback(marker.value)
        return outcome

    async def _run(self, attempt: _Attempt) -> GenerationOutcome:
        request = attempt.request
        policy = attempt.policy
        multi = self._flags.is_enabled_for_tier(request.tier)

        run_validation = (
            multi
            and policy.uses(ProviderRole.validation)
            and self._pool.is_configured(ProviderRole.validation)
        )
        run_qa = multi and policy.uses(ProviderRole.qa) and self._pool.is_configured(ProviderRole.qa)

        self._transition(attempt, OrchestratorState.drafting)
        planned = [ProviderRole.drafting.value]
        if run_validation:
            planned.append(ProviderRole.validation.value)
        if run_qa:
            planned.append(ProviderRole.qa.value)
        self._emit(
            attempt,
            Phase1Event(
                message=f"Generating itinerary with {len(planned)} provider(s)...",
                percent=20,
                providers=planned,
            ),
        )

        draft = await self._draft(attempt)
        phase1_latency_ms = (self._clock() - attempt.started) * 1000

        if draft is None:
            self._transition(attempt, OrchestratorState.failed)
            logger.error(
                "Drafting failed, no itinerary produced",
                extra={
                    "structured": {
                        "request_id": request.request_id,
                        "tier": request.tier.value,
                        "retry_count": attempt.retry_count,
                    }
                },
            )
            return GenerationOutcome(
                success=False,
                error=DRAFTING_FAILED_MESSAGE,
                metrics=self._metrics_for(attempt, phase1_latency_ms, None),
            )

        self._emit(attempt, ProgressUpdate(message="Draft ready", percent=50))
        phase2_started = self._clock()

        checks: list[LocationCheck] = []
        if run_validation:
            self._transition(attempt, OrchestratorState.validating)
            self._emit(attempt, ProgressUpdate(message="Verifying locations...", percent=60))
            result = await self._invoke(
                attempt,
                ProviderRole.validation,
                ProviderTask(request=request, draft=draft),
                self._settings.validation_timeout_ms,
            )
            if result.success and isinstance(result.payload, ValidationPayload):
                checks = result.payload.checks
                attempt.providers_used.append(ProviderRole.validation)
            else:
                self._degrade(attempt, FallbackMarker.validation_skipped, result)

        review: QualityReview | None = None
        if run_qa:
            self._transition(attempt, OrchestratorState.quality_check)
            result = await self._invoke(
                attempt,
                ProviderRole.qa,
                ProviderTask(
                    request=request, draft=draft, checks=tuple(checks), qa_level=policy.qa_level
                ),
                self._settings.qa_timeout_ms,
            )
            if result.success and isinstance(result.payload, QualityPayload):
                review = result.payload.review
                attempt.providers_used.append(ProviderRole.qa)
                self._emit(
                    attempt,
                    Phase2Event(percent=80, quality_score=review.quality_score),
                )
            else:
                self._degrade(attempt, FallbackMarker.qa_skipped, result)

        revision_cycles = 0
        while (
            review is not None
            and revision_cycles < policy.revision_cycles
            and _needs_revision(policy, review)
        ):
            revised = await self._revise(attempt, draft, checks, review)
            if revised is None:
                break
            draft, checks, review = revised
            revision_cycles += 1

        phase2_latency_ms = (
            (self._clock() - phase2_started) * 1000 if (run_validation or run_qa) else None
        )

        self._transition(attempt, OrchestratorState.merging)
        itinerary = draft
        report: ValidationReport | None = None
        if checks or review is not None:
            itinerary, report = merge_enrichments(
                draft,
                checks,
                review,
                self._settings.validation_confidence_threshold,
                revision_cycles=revision_cycles,
            )

        self._transition(attempt, OrchestratorState.done)
        return GenerationOutcome(
            success=True,
            itinerary=itinerary,
            quality_score=review.quality_score if review is not None else None,
            validation_report=report,
            fallback_used=",".join(m.value for m in attempt.markers) or None,
            metrics=self._metrics_for(attempt, phase1_latency_ms, phase2_latency_ms),
        )

    async def _draft(self, attempt: _Attempt) -> GeneratedItinerary | None:
        """Cache lookup, then drafting with the tier's retry budget."""
        request = attempt.request
        fingerprint = fingerprint_request(request) if self._cache is not None else None

        if fingerprint is not None:
            cached = await attempt.token.race(self._cache.get(fingerprint))
            if cached is not None:
                attempt.cache_hits += 1
                self._metrics.inc_cache_hit()
                self._provider_logger.log_cache_hit(request.request_id, fingerprint)
                return cached

        task = ProviderTask(request=request)
        max_attempts = 1 + attempt.policy.drafting_retries

        for attempt_no in range(1, max_attempts + 1):
            result = await self._invoke(
                attempt,
                ProviderRole.drafting,
                task,
                self._settings.drafting_timeout_ms,
                attempt_no=attempt_no,
            )
            if result.success and isinstance(result.payload, DraftPayload):
                attempt.providers_used.append(ProviderRole.drafting)
                draft = result.payload.itinerary
                if fingerprint is not None:
                    await attempt.token.race(self._cache.put(fingerprint, draft))
                return draft

            if result.error_kind not in RETRYABLE_ERROR_KINDS or attempt_no == max_attempts:
                break
            if attempt.deadline - self._clock() <= 0:
                break

            attempt.retry_count += 1
            await attempt.token.race(self._backoff())

        return None

    async def _revise(
        self,
        attempt: _Attempt,
        draft: GeneratedItinerary,
        checks: list[LocationCheck],
        review: QualityReview,
    ) -> tuple[GeneratedItinerary, list[LocationCheck], QualityReview] | None:
        """One revision cycle: replace flagged activities, then a quick re-review.

        Returns None when nothing could be replaced or the re-review failed; the
        caller then keeps the reviewed draft as it was.
        """
        request = attempt.request
        self._emit(attempt, ProgressUpdate(message="Refining itinerary...", percent=85))

        replaced: dict[tuple[int, int], Activity] = {}
        for suggestion in _replace_suggestions(draft, review):
            position = (suggestion.day_index, suggestion.activity_index)
            day = draft.daily_plans[suggestion.day_index]
            current = day.activities[suggestion.activity_index]
            replacement = ActivityReplacement(
                day_index=suggestion.day_index,
                activity_index=suggestion.activity_index,
                theme=day.theme,
                time=current.time,
                time_of_day=current.time_of_day,
                category=current.category,
                requirements=suggestion.reason,
                exclude_names=tuple(a.name for a in day.activities),
            )
            result = await self._invoke(
                attempt,
                ProviderRole.drafting,
                ProviderTask(request=request, replacement=replacement),
                self._settings.drafting_timeout_ms,
            )
            if result.success and isinstance(result.payload, ActivityPayload):
                replaced[position] = result.payload.activity

        if not replaced:
            logger.info(
                "Revision produced no replacements, keeping reviewed draft",
                extra={"structured": {"request_id": request.request_id}},
            )
            return None

        revised = draft.model_copy(deep=True)
        for (day_index, activity_index), activity in replaced.items():
            revised.daily_plans[day_index].activities[activity_index] = activity
        kept_checks = [c for c in checks if (c.day_index, c.activity_index) not in replaced]

        result = await self._invoke(
            attempt,
            ProviderRole.qa,
            ProviderTask(
                request=request, draft=revised, checks=tuple(kept_checks), qa_level=QALevel.quick
            ),
            self._settings.qa_timeout_ms,
        )
        if not (result.success and isinstance(result.payload, QualityPayload)):
            logger.warning(
                "Re-review after revision failed, keeping reviewed draft",
                extra={
                    "structured": {
                        "request_id": request.request_id,
                        "reason": result.error_kind.value if result.error_kind else None,
                    }
                },
            )
            return None

        logger.info(
            f"Revision replaced {len(replaced)} activities",
            extra={
                "structured": {
                    "request_id": request.request_id,
                    "quality_score": result.payload.review.quality_score,
                }
            },
        )
        return revised, kept_checks, result.payload.review

    async def _invoke(
        self,
        attempt: _Attempt,
        role: ProviderRole,
        task: ProviderTask,
        stage_timeout_ms: int,
        attempt_no: int = 1,
    ) -> ProviderResult:
        """One guarded adapter call: breaker, remaining budget, cancellation race."""
        attempt.token.throw_if_cancelled()
        adapter = self._pool.get(role)
        provider = adapter.provider if adapter is not None else "none"
        breaker = self._breakers.get(role.value)

        if not breaker.allow_request(datetime.now()):
            result = ProviderResult.failure(
                role, provider, ProviderErrorKind.circuit_open, f"Circuit open for {role.value}"
            )
            self._record(attempt, result, attempt_no)
            return result

        remaining_ms = (attempt.deadline - self._clock()) * 1000
        timeout_ms = min(stage_timeout_ms, remaining_ms)
        if timeout_ms <= 0:
            breaker.release()
            result = ProviderResult.failure(
                role, provider, ProviderErrorKind.timeout, "Request budget exhausted"
            )
            self._record(attempt, result, attempt_no)
            return result

        try:
            result = await attempt.token.race(self._pool.invoke(role, task, timeout_ms / 1000))
        except (GenerationCancelledError, asyncio.CancelledError):
            breaker.release()
            raise

        if result.success:
            breaker.record_success()
        elif result.error_kind in RETRYABLE_ERROR_KINDS:
            breaker.record_failure(datetime.now())
        else:
            breaker.release()

        self._record(attempt, result, attempt_no)
        return result

    async def _backoff(self) -> None:
        delay_ms = random.uniform(
            self._settings.retry_jitter_min_ms, self._settings.retry_jitter_max_ms
        )
        await self._sleep(delay_ms / 1000)

    def _record(self, attempt: _Attempt, result: ProviderResult, attempt_no: int) -> None:
        outcome = "success" if result.success else (result.error_kind or ProviderErrorKind.network).value
        self._provider_logger.log_invocation(attempt.request.request_id, result, attempt=attempt_no)
        self._metrics.record_provider(result.role.value, result.provider, outcome, result.latency_ms)
        if not result.success:
            self._metrics.inc_provider_error(result.role.value, result.provider, outcome)

    def _degrade(self, attempt: _Attempt, marker: FallbackMarker, result: ProviderResult) -> None:
        attempt.markers.append(marker)
        logger.warning(
            f"Continuing without {result.role.value}: {marker.value}",
            extra={
                "structured": {
                    "request_id": attempt.request.request_id,
                    "role": result.role.value,
                    "reason": result.error_kind.value if result.error_kind else None,
                }
            },
        )

    def _transition(self, attempt: _Attempt, state: OrchestratorState) -> None:
        attempt.token.throw_if_cancelled()
        attempt.state = state
        logger.debug(
            f"Orchestrator -> {state.value}",
            extra={"structured": {"request_id": attempt.request.request_id}},
        )

    def _emit(self, attempt: _Attempt, event: ProgressEvent) -> None:
        attempt.token.throw_if_cancelled()
        if attempt.channel is not None:
            attempt.channel.emit(event)

    def _metrics_for(
        self,
        attempt: _Attempt,
        phase1_latency_ms: float | None,
        phase2_latency_ms: float | None,
    ) -> GenerationMetrics:
        return GenerationMetrics(
            total_latency_ms=(self._clock() - attempt.started) * 1000,
            phase1_latency_ms=phase1_latency_ms,
            phase2_latency_ms=phase2_latency_ms,
            providers_used=list(attempt.providers_used),
            cache_hits=attempt.cache_hits,
            retry_count=attempt.retry_count,
        )

    def get_health_status(self) -> dict[str, Any]:
        """Configured adapters, breaker states and cache stats. No I/O."""
        return {
            "multiProviderEnabled": self._flags.multi_provider_enabled,
            "providers": self._pool.describe(),
            "circuitBreakers": self._breakers.states(),
            "cache": self._cache.stats() if self._cache is not None else {"backend": "disabled"},
        }
