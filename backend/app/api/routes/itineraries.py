"""Itinerary generation endpoints.

- POST /itineraries/generate-v2          buffered JSON response
- POST /itineraries/generate-v2/stream   server-sent events
- GET  /itineraries/generate-v2          orchestrator health

Both POST routes run the same pipeline; they differ only in the progress channel.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from backend.app.api.auth import AuthenticatedUser, get_current_user
from backend.app.api.deps import GenerationServices, get_services
from backend.app.collaborators.side_effects import ITINERARY_CREATED_ACTION
from backend.app.collaborators.thumbnails import with_placeholders
from backend.app.collaborators.usage import (
    ITINERARIES_CREATED,
    UsageDecision,
    get_upgrade_suggestion,
)
from backend.app.features.tiers import is_multi_provider_enabled
from backend.app.models.common import ProviderRole
from backend.app.models.events import CompleteEvent, ErrorEvent, ProgressUpdate, StartEvent
from backend.app.models.outcome import GenerationOutcome
from backend.app.models.request import GenerateItineraryBody, GenerationRequest
from backend.app.orchestration.progress import (
    BufferedProgressChannel,
    ProgressChannel,
    StreamingProgressChannel,
)
from backend.app.orchestration.resilience import BreakerState, CancelToken, GenerationCancelledError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/itineraries")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


def _limit_exceeded(decision: UsageDecision, services: GenerationServices) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": "limit_exceeded",
        "message": (
            f"You've reached your limit of {decision.usage.limit} itineraries this month"
        ),
        "usage": decision.usage.model_dump(mode="json", by_alias=True),
    }
    upgrade = get_upgrade_suggestion(decision.tier, services.settings)
    if upgrade is not None:
        body["upgrade"] = upgrade.model_dump(mode="json", by_alias=True)
    return body


def _shows_meta(request: GenerationRequest, services: GenerationServices) -> bool:
    return is_multi_provider_enabled(
        request.tier
    ) and services.orchestrator.flags.is_enabled_for_tier(request.tier)


def _meta(outcome: GenerationOutcome) -> dict[str, Any]:
    return {
        "qualityScore": outcome.quality_score,
        "validationReport": (
            outcome.validation_report.model_dump(mode="json", by_alias=True)
            if outcome.validation_report is not None
            else None
        ),
        "fallbackUsed": outcome.fallback_used,
        "metrics": outcome.metrics.model_dump(mode="json", by_alias=True),
    }


async def run_generation(
    services: GenerationServices,
    user: AuthenticatedUser,
    body: GenerateItineraryBody,
    channel: ProgressChannel,
    cancel_token: CancelToken,
) -> tuple[int, dict[str, Any]]:
    """Quota check, orchestration, thumbnails, persistence and side effects.

    Every outcome is also reported on `channel`, ending in exactly one
    terminal event.

    Returns:
        (status_code, response_body)
    """
    channel.emit(StartEvent())

    decision = await services.usage.check_and_track(user.user_id, ITINERARIES_CREATED)
    if not decision.allowed:
        limit_body = _limit_exceeded(decision, services)
        channel.emit(
            ErrorEvent(
                error="limit_exceeded",
                message=limit_body["message"],
                details={k: v for k, v in limit_body.items() if k in ("usage", "upgrade")},
            )
        )
        return 429, limit_body

    request = GenerationRequest.from_body(body, tier=decision.tier, user_id=user.user_id)
    channel.emit(ProgressUpdate(message="Analyzing your preferences...", percent=10))

    outcome = await services.orchestrator.generate(
        request, channel=channel, cancel_token=cancel_token
    )
    show_meta = _shows_meta(request, services)

    if not outcome.success or outcome.itinerary is None:
        failure: dict[str, Any] = {
            "error": "generation_failed",
            "message": outcome.error or "Failed to generate itinerary",
        }
        details: dict[str, Any] = {}
        if show_meta:
            failure["fallbackUsed"] = outcome.fallback_used
            failure["metrics"] = outcome.metrics.model_dump(mode="json", by_alias=True)
            details["metrics"] = failure["metrics"]
        channel.emit(
            ErrorEvent(
                error="generation_failed",
                message=failure["message"],
                fallback_used=outcome.fallback_used if show_meta else None,
                details=details,
            )
        )
        return 500, failure

    cancel_token.throw_if_cancelled()
    itinerary = outcome.itinerary
    try:
        plans = await services.thumbnails.add_thumbnails(itinerary.daily_plans, itinerary.city)
    except Exception as e:
        logger.warning(
            f"Thumbnail enrichment failed, using placeholders: {type(e).__name__}",
            extra={"structured": {"request_id": request.request_id}},
        )
        plans = with_placeholders(itinerary.daily_plans)
    itinerary = itinerary.model_copy(update={"daily_plans": plans})

    channel.emit(ProgressUpdate(message="Saving itinerary...", percent=90))
    # A disconnect during enrichment must not persist anything
    cancel_token.throw_if_cancelled()
    itinerary_id = await services.store.save(user.user_id, itinerary, request)

    services.background.spawn(
        "xp_award", services.xp.award(user.user_id, ITINERARY_CREATED_ACTION)
    )

    response: dict[str, Any] = {
        "success": True,
        "itinerary": {**itinerary.model_dump(mode="json", by_alias=True), "id": itinerary_id},
    }
    if show_meta:
        response["meta"] = _meta(outcome)

    logger.info(
        f"Generated itinerary {itinerary_id}",
        extra={
            "structured": {
                "request_id": request.request_id,
                "tier": request.tier.value,
                "fallback_used": outcome.fallback_used,
                "total_latency_ms": round(outcome.metrics.total_latency_ms, 2),
            }
        },
    )
    channel.emit(CompleteEvent(data=response))
    return 200, response


@router.post("/generate-v2", response_model=None)
async def generate_itinerary(
    body: GenerateItineraryBody,
    user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    services: Annotated[GenerationServices, Depends(get_services)],
) -> JSONResponse:
    """Generate an itinerary and return it in one JSON response.

    Returns:
        200 with itinerary (and meta for multi-provider tiers)
        429 when the monthly quota is exhausted
        500 when drafting failed
    """
    token = CancelToken()
    channel = BufferedProgressChannel(token)
    status_code, response = await run_generation(services, user, body, channel, token)
    return JSONResponse(status_code=status_code, content=response)


@router.post("/generate-v2/stream")
async def generate_itinerary_stream(
    body: GenerateItineraryBody,
    user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    services: Annotated[GenerationServices, Depends(get_services)],
) -> StreamingResponse:
    """Generate an itinerary, streaming progress as server-sent events.

    The stream ends with one `complete` or `error` event. A client disconnect
    cancels the attempt; the wall-clock cap ends it with an `error` of type
    `timeout`.
    """
    settings = services.settings
    token = CancelToken()
    channel = StreamingProgressChannel(token, heartbeat_seconds=settings.stream_heartbeat_seconds)

    async def produce() -> None:
        try:
            await asyncio.wait_for(
                run_generation(services, user, body, channel, token),
                timeout=settings.stream_timeout_ms / 1000,
            )
        except TimeoutError:
            logger.warning("Streaming generation hit the wall-clock cap")
            if not channel.terminated:
                channel.emit(ErrorEvent(error="timeout", message="Generation timed out"))
        except GenerationCancelledError:
            logger.info("Streaming generation cancelled by client disconnect")
        except Exception:
            logger.exception("Streaming generation failed")
            if not channel.terminated:
                channel.emit(ErrorEvent(error="internal_error", message=INTERNAL_ERROR_MESSAGE))
        finally:
            channel.close()

    async def event_generator() -> AsyncGenerator[str, None]:
        producer = asyncio.create_task(produce())
        try:
            async for frame in channel.frames():
                yield frame
        finally:
            if not producer.done():
                # Consumer went away before the terminal event
                token.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/generate-v2")
async def generation_health(
    services: Annotated[GenerationServices, Depends(get_services)],
) -> dict[str, Any]:
    """Orchestrator health: configured providers, breaker states and cache stats.

    Status is `error` when drafting cannot run: no configured adapter or an open breaker.
    """
    status = services.orchestrator.get_health_status()
    drafting = ProviderRole.drafting.value
    can_draft = (
        status["providers"][drafting]["configured"]
        and status["circuitBreakers"].get(drafting) != BreakerState.OPEN.value
    )
    return {
        "status": "ok" if can_draft else "error",
        "multiLLMEnabled": status["multiProviderEnabled"],
        "providers": status["providers"],
        "circuitBreakers": status["circuitBreakers"],
        "cache": status["cache"],
    }
