"""Drafting response cache.

Entries are insert-only: a fingerprint, once cached, is never overwritten
until it expires.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from backend.app.config import Settings
from backend.app.models.itinerary import GeneratedItinerary
from backend.app.models.request import GenerationRequest

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "itinerary:draft"


def fingerprint_request(request: GenerationRequest) -> str | None:
    """Deterministic cache key for the drafting inputs of a request.

    Returns:
        Hex digest, or None when the request carries a free-form template prompt
        (those are never cached)
    """
    if request.template_prompt:
        return None

    data = {
        "city": " ".join(request.city.lower().split()),
        "days": request.days,
        "interests": sorted(i.lower() for i in request.interests),
        "budget": request.budget,
        "pace": request.pace,
    }
    sorted_json = json.dumps(data, sort_keys=True)
    return hashlib.sha256(sorted_json.encode()).hexdigest()


class ResponseCache(Protocol):
    """Protocol for drafting response caches."""

    async def get(self, fingerprint: str) -> GeneratedItinerary | None:
        """Cached itinerary if fresh, None otherwise."""
        ...

    async def put(self, fingerprint: str, itinerary: GeneratedItinerary) -> bool:
        """Insert if absent. Returns True when the entry was stored."""
        ...

    def stats(self) -> dict[str, Any]:
        """Backend name and counters for health checks. No I/O."""
        ...


@dataclass
class CacheEntry:
    """Cached itinerary with metadata."""

    value: GeneratedItinerary
    cached_at: datetime
    ttl_seconds: int

    def is_fresh(self, now: datetime) -> bool:
        """Check if cache entry is still valid."""
        return (now - self.cached_at).total_seconds() < self.ttl_seconds


class InMemoryResponseCache:
    """In-memory cache for drafted itineraries."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._ttl_seconds = ttl_seconds
        self._cache: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    async def get(self, fingerprint: str, now: datetime | None = None) -> GeneratedItinerary | None:
        now = now or datetime.now()
        entry = self._cache.get(fingerprint)
        if entry and entry.is_fresh(now):
            self.hits += 1
            return entry.value
        elif entry:
            # Expired - remove
            del self._cache[fingerprint]
        self.misses += 1
        return None

    async def put(
        self, fingerprint: str, itinerary: GeneratedItinerary, now: datetime | None = None
    ) -> bool:
        now = now or datetime.now()
        self._evict_expired(now)
        if fingerprint in self._cache:
            return False
        self._cache[fingerprint] = CacheEntry(
            value=itinerary, cached_at=now, ttl_seconds=self._ttl_seconds
        )
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "entries": len(self._cache),
            "hits": self.hits,
            "misses": self.misses,
        }

    def _evict_expired(self, now: datetime) -> None:
        expired = [key for key, entry in self._cache.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._cache[key]


class RedisResponseCache:
    """Redis-backed cache using SET NX EX for insert-only writes."""

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int = 3600) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds
        self.hits = 0
        self.misses = 0
        self.errors = 0

    def _key(self, fingerprint: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{fingerprint}"

    async def get(self, fingerprint: str) -> GeneratedItinerary | None:
        # Cache failures degrade to a miss
        try:
            raw = await self._redis.get(self._key(fingerprint))
        except RedisError as e:
            self.errors += 1
            logger.warning(f"Response cache read failed: {type(e).__name__}")
            return None

        if raw is None:
            self.misses += 1
            return None

        try:
            itinerary = GeneratedItinerary.model_validate_json(raw)
        except ValidationError:
            self.errors += 1
            logger.warning("Discarding unreadable response cache entry")
            return None

        self.hits += 1
        return itinerary

    async def put(self, fingerprint: str, itinerary: GeneratedItinerary) -> bool:
        try:
            stored = await self._redis.set(
                self._key(fingerprint),
                itinerary.model_dump_json(by_alias=True),
                nx=True,
                ex=self._ttl_seconds,
            )
        except RedisError as e:
            self.errors += 1
            logger.warning(f"Response cache write failed: {type(e).__name__}")
            return False
        return bool(stored)

    def stats(self) -> dict[str, Any]:
        return {
            "backend": "redis",
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
        }


def build_response_cache(settings: Settings) -> ResponseCache | None:
    """Select the cache backend from settings.

    Returns:
        RedisResponseCache when redis_url is set, InMemoryResponseCache otherwise,
        None when caching is disabled
    """
    if not settings.response_cache_enabled:
        return None
    if settings.redis_url:
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        return RedisResponseCache(client, ttl_seconds=settings.response_cache_ttl_seconds)
    return InMemoryResponseCache(ttl_seconds=settings.response_cache_ttl_seconds)
