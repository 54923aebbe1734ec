"""Application services and their FastAPI dependencies."""

from dataclasses import dataclass

from fastapi import Request

from backend.app.cache.responses import build_response_cache
from backend.app.collaborators.side_effects import DetachedTaskRegistry, HttpXPAwarder, XPAwarder
from backend.app.collaborators.store import InMemoryItineraryStore, ItineraryStore
from backend.app.collaborators.thumbnails import PlaceholderThumbnailService, ThumbnailService
from backend.app.collaborators.usage import InMemoryUsageTracker, UsageTracker
from backend.app.config import Settings
from backend.app.orchestration.orchestrator import ItineraryOrchestrator
from backend.app.providers.factory import build_provider_pool


@dataclass
class GenerationServices:
    """Everything the generation endpoints need, built once per application."""

    settings: Settings
    orchestrator: ItineraryOrchestrator
    usage: UsageTracker
    thumbnails: ThumbnailService
    store: ItineraryStore
    xp: XPAwarder
    background: DetachedTaskRegistry


def build_services(settings: Settings) -> GenerationServices:
    """Wire default collaborators from settings."""
    orchestrator = ItineraryOrchestrator(
        pool=build_provider_pool(settings),
        settings=settings,
        cache=build_response_cache(settings),
    )
    return GenerationServices(
        settings=settings,
        orchestrator=orchestrator,
        usage=InMemoryUsageTracker(settings),
        thumbnails=PlaceholderThumbnailService(),
        store=InMemoryItineraryStore(),
        xp=HttpXPAwarder(
            settings.gamification_award_url, timeout_seconds=settings.side_effect_timeout_seconds
        ),
        background=DetachedTaskRegistry(timeout_seconds=settings.side_effect_timeout_seconds),
    )


def get_services(request: Request) -> GenerationServices:
    """Services stored on the application at startup."""
    services: GenerationServices = request.app.state.services
    return services
