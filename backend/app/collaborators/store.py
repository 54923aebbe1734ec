"""Itinerary persistence interface and in-memory implementation."""

import uuid
from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel

from backend.app.models.itinerary import GeneratedItinerary
from backend.app.models.request import GenerationRequest


class SavedItinerary(BaseModel):
    """Stored itinerary with owner and creation metadata."""

    id: str
    user_id: str
    itinerary: GeneratedItinerary
    request: GenerationRequest
    created_at: datetime


class ItineraryStore(Protocol):
    """Protocol for itinerary persistence."""

    async def save(
        self, user_id: str, itinerary: GeneratedItinerary, request: GenerationRequest
    ) -> str:
        """Persist an itinerary and return its id."""
        ...


class InMemoryItineraryStore:
    """In-memory implementation of ItineraryStore."""

    def __init__(self) -> None:
        self._items: dict[str, SavedItinerary] = {}

    async def save(
        self, user_id: str, itinerary: GeneratedItinerary, request: GenerationRequest
    ) -> str:
        itinerary_id = str(uuid.uuid4())
        self._items[itinerary_id] = SavedItinerary(
            id=itinerary_id,
            user_id=user_id,
            itinerary=itinerary,
            request=request,
            created_at=datetime.now(UTC),
        )
        return itinerary_id

    def get(self, itinerary_id: str) -> SavedItinerary | None:
        """Get stored itinerary (useful for testing)."""
        return self._items.get(itinerary_id)

    def list_for_user(self, user_id: str) -> list[SavedItinerary]:
        """All itineraries owned by a user, newest first."""
        items = [s for s in self._items.values() if s.user_id == user_id]
        return sorted(items, key=lambda s: s.created_at, reverse=True)
