"""Liveness and readiness endpoints.

- /health: process is up
- /healthz: drafting provider bound and Redis (when configured) reachable
"""

import json
from typing import Annotated, Any

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Response
from redis.exceptions import RedisError

from backend.app.api.deps import GenerationServices, get_services
from backend.app.config import Settings

router = APIRouter()


async def check_redis(settings: Settings) -> tuple[bool, str]:
    """Check Redis connectivity.

    Returns:
        (is_ok, status_message)
    """
    if not settings.redis_url:
        return (True, "not_configured")

    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
        return (True, "ok")
    except RedisError as e:
        return (False, f"error: {type(e).__name__}")
    finally:
        await client.aclose()


def check_providers(services: GenerationServices) -> tuple[bool, dict[str, str]]:
    """Check which provider roles are bound.

    Only drafting is required; validation and QA are optional enrichments.

    Returns:
        (is_ok, per-role status)
    """
    described = services.orchestrator.get_health_status()["providers"]
    statuses = {
        role: (info["provider"] if info.get("configured") else "not_configured")
        for role, info in described.items()
    }
    return (statuses.get("drafting") != "not_configured", statuses)


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    services: Annotated[GenerationServices, Depends(get_services)],
) -> dict[str, Any] | Response:
    """Readiness check.

    Returns:
        200 with component status if core systems ok
        503 if critical components fail
    """
    redis_ok, redis_status = await check_redis(services.settings)
    providers_ok, provider_statuses = check_providers(services)

    core_ok = redis_ok and providers_ok

    response_body = {
        "status": "ok" if core_ok else "degraded",
        "components": {
            "redis": redis_status,
            "providers": provider_statuses,
        },
    }

    if not core_ok:
        return Response(
            content=json.dumps(response_body),
            status_code=503,
            media_type="application/json",
        )

    return response_body
